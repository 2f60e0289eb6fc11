"""HTTP middleware: CORS, rate limiting, error mapping.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight
2. Rate limiting -- slowapi, per client IP, on order creation
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException

from storefront.config import Settings
from storefront.errors import StorefrontError

logger = logging.getLogger(__name__)

# Only trust X-Forwarded-For behind a configured proxy
_TRUSTED_PROXIES = os.environ.get("TRUSTED_PROXIES", "")


def _get_client_ip(request: Request) -> str:
    """Extract client IP, respecting TRUSTED_PROXIES config."""
    if _TRUSTED_PROXIES:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=_get_client_ip)


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        {"error": "Rate limit exceeded", "retry_after": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


async def _storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": str(exc)}, status_code=exc.status_code)


async def _http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def install_middleware(app: FastAPI, cfg: Settings) -> None:
    """Install CORS, rate limiting and error handlers on ``app``."""
    app.add_exception_handler(StorefrontError, _storefront_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

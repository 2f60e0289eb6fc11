"""Customer authentication — HS256 JWT bearer tokens.

Security contract:
- Tokens are verified with python-jose; any JWTError means anonymous
- Checkout never requires a token: no token means a guest order
- A token that is present but invalid is rejected (401), never downgraded
  to guest
- Claims: sub (user id), email, role ("customer" | "admin")
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException, Request, WebSocket
from jose import JWTError, jwt

from storefront.config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
GUEST_USER_ID = "guest"


def create_access_token(
    user_id: str,
    email: str = "",
    role: str = "customer",
    ttl: timedelta | None = None,
    secret: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + (ttl or timedelta(days=settings.jwt_ttl_days)),
    }
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=ALGORITHM)


def verify_token(token: str, secret: str | None = None) -> dict[str, Any] | None:
    """Verify a JWT. Returns claims or None."""
    try:
        claims = jwt.decode(token, secret or settings.jwt_secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        logger.debug("Token rejected: %s", exc)
        return None
    if not claims.get("sub"):
        return None
    return claims


def extract_bearer_token(auth_header: str | None) -> str | None:
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def optional_user(request: Request) -> dict[str, Any] | None:
    """Claims of the caller, or None for anonymous (guest) requests."""
    header = request.headers.get("authorization")
    if not header:
        return None
    token = extract_bearer_token(header)
    claims = verify_token(token) if token else None
    if claims is None:
        raise _unauthorized("Invalid or expired credentials")
    return claims


def require_user(request: Request) -> dict[str, Any]:
    claims = optional_user(request)
    if claims is None:
        raise _unauthorized("Authentication required")
    return claims


def is_admin(claims: dict[str, Any] | None) -> bool:
    return bool(claims) and claims.get("role") == "admin"


def websocket_user(websocket: WebSocket) -> dict[str, Any] | None:
    """Claims from ``?token=`` or an Authorization header on the handshake."""
    token = websocket.query_params.get("token") or extract_bearer_token(
        websocket.headers.get("authorization")
    )
    return verify_token(token) if token else None

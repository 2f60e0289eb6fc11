"""Storefront HTTP API (FastAPI)."""

from storefront.api.app import configure_logging, create_app

__all__ = ["configure_logging", "create_app"]

"""
API key authentication middleware.
Supports both X-API-Key header and Authorization: Bearer token.

Enforced only when SITE_API_KEY is configured.

PUBLIC ROUTES (no auth required):
- /health - Liveness probe
- /api-docs, /redoc, /openapi.json - API documentation

PROTECTED ROUTES (API key required):
- /build, /docs - Pipeline triggers
- /storage/* - Store diagnostics
- /metrics - Metrics endpoint
"""
import hmac
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Routes that don't require authentication
PUBLIC_PATHS = frozenset([
    "/health",
    "/api-docs",
    "/redoc",
    "/openapi.json",
])


def is_public_path(path: str) -> bool:
    """Check if a path is public (no auth required)."""
    return path in PUBLIC_PATHS


def extract_api_key(request: Request) -> Optional[str]:
    """API key from X-API-Key, falling back to Authorization: Bearer."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce API key on protected endpoints.

    The expected key is read from app.state.settings on every request.
    """

    async def dispatch(self, request: Request, call_next):
        expected = request.app.state.settings.api_key
        path = request.url.path

        if not expected or is_public_path(path):
            return await call_next(request)

        api_key = extract_api_key(request)
        if not api_key:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing API key"}
            )

        if not hmac.compare_digest(api_key.encode(), expected.encode()):
            # Log failed auth attempt (don't include the key!)
            logger.warning(f"auth_failed path={path}")
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid API key"}
            )

        return await call_next(request)

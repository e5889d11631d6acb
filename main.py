#!/usr/bin/env python3
"""
site-builder: multi-tenant static-site build and publish service.

API host (api.<domain> or bare domain):
- POST /build, POST /docs, GET /storage/health, GET /metrics, GET /health
Tenant hosts (<project>.<domain>):
- Published build output served straight from the bucket
"""
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.builds import router as builds_router
from app.api.metrics import router as metrics_router
from app.core.config import get_settings
from app.core.logging import setup_logging
from app.core.request_logging import RequestLoggingMiddleware
from app.core.security import APIKeyMiddleware
from app.core.tenancy import TenantSiteMiddleware
from app.storage.object_store import MinioObjectStore

# =============================================================================
# Configuration from environment
# =============================================================================
LISTEN_HOST = os.environ.get("LISTEN_HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3001"))
VERSION = "1.0.0"

# Setup structured JSON logging
setup_logging(os.environ.get("LOG_LEVEL", "INFO"))

settings = get_settings()

# Create app
app = FastAPI(
    title="site-builder",
    description="Build tenant sites from object storage and serve the output",
    version=VERSION,
    docs_url="/api-docs",
)

# Shared, read-only after startup; tests replace it with an in-memory fake
app.state.settings = settings
app.state.object_store = MinioObjectStore.from_settings(settings)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Reject malformed requests with 400 and field-level reasons only."""
    detail = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": "validation",
            "message": "Invalid or missing project name",
            "detail": detail,
        },
    )


# Middleware runs outermost-last-added: request logging sees every request,
# tenant sites are answered before API key checks.
app.add_middleware(APIKeyMiddleware)
app.add_middleware(TenantSiteMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# Include routes
app.include_router(builds_router)
app.include_router(metrics_router)


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "site-builder is running", "version": VERSION}


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=LISTEN_HOST, port=PORT)

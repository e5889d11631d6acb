"""
Hostname-based tenant resolution and published-site serving.

A request to <project>.<domain> is answered from the project's published
build output in the bucket; requests to the API host (or a bare domain)
fall through to the API routes.
"""
import logging
from typing import Optional
from urllib.parse import unquote

from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.build_runner import build_output_prefix
from app.core.metrics import metrics
from app.storage.object_store import ObjectStoreError, call_store

logger = logging.getLogger(__name__)

INDEX_DOCUMENT = "index.html"


def get_subdomain(hostname: str) -> Optional[str]:
    """
    First label of hostname when it has one.

    `docs.localhost` -> "docs"; `docs.example.com` -> "docs";
    `example.com` and `localhost` -> None.
    """
    if not hostname:
        return None
    parts = hostname.lower().split(".")

    if hostname.lower().endswith("localhost"):
        return parts[0] if len(parts) > 1 else None
    return parts[0] if len(parts) > 2 else None


def artifact_key(project_name: str, path: str) -> Optional[str]:
    """
    Object key for a request path under a project's build output.

    Directory paths get index.html appended. Returns None for paths that
    try to climb out of the project's output prefix.
    """
    path = unquote(path or "/")
    if not path.startswith("/"):
        path = "/" + path
    if path.endswith("/"):
        path += INDEX_DOCUMENT

    if ".." in path.split("/") or "\\" in path:
        return None
    return f"{build_output_prefix(project_name)}{path}"


class TenantSiteMiddleware(BaseHTTPMiddleware):
    """
    Serve published sites for tenant hostnames.

    The store and bucket come from app.state so tests can swap in a fake.
    Any store failure (missing object, denied, unreachable) is a 404.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        hostname = request.url.hostname or ""
        tenant = get_subdomain(hostname)
        settings = request.app.state.settings

        if not tenant or tenant == settings.api_subdomain:
            return await call_next(request)

        metrics.inc("site_requests_total")
        key = artifact_key(tenant, request.url.path)
        if key is None:
            metrics.inc("site_not_found_total")
            return PlainTextResponse("Not Found", status_code=404)

        store = request.app.state.object_store
        try:
            obj = await call_store(
                store.get, settings.bucket, key, timeout=settings.request_timeout_s
            )
        except ObjectStoreError as e:
            metrics.inc("site_not_found_total")
            logger.info(
                f"site_not_found tenant={tenant} error_type={type(e).__name__}",
                extra={"tenant": tenant, "key": key},
            )
            return PlainTextResponse("Not Found", status_code=404)

        headers = {"Content-Length": str(obj.size)}
        if obj.etag:
            headers["ETag"] = obj.etag
        return Response(
            content=obj.body,
            media_type=obj.content_type or "application/octet-stream",
            headers=headers,
        )

"""
Service configuration from environment variables.
All settings are optional with safe defaults.
"""
import os
import shlex
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_SCAFFOLD_COMMAND = "bunx create-docusaurus@latest {project} classic --typescript"


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    """Read a positive integer, falling back to default on bad input."""
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Service configuration (immutable)."""
    # Object store
    store_endpoint: str = "localhost:9000"
    store_access_key: Optional[str] = None  # Never logged
    store_secret_key: Optional[str] = None  # Never logged
    store_region: str = "auto"
    store_secure: bool = False
    bucket: str = "ai-doc-automation"
    connect_timeout_s: int = 10
    request_timeout_s: int = 30
    max_attempts: int = 3
    # Transfer
    publish_concurrency: int = 8
    # Build
    build_tool: str = "bun"
    build_output_dir: str = "build"
    step_timeout_s: int = 600
    scaffold_command: tuple[str, ...] = field(
        default_factory=lambda: tuple(shlex.split(DEFAULT_SCAFFOLD_COMMAND))
    )
    # HTTP
    api_subdomain: str = "api"
    api_key: Optional[str] = None  # Never logged

    @property
    def store_configured(self) -> bool:
        """Check if object store credentials are present."""
        return bool(self.store_access_key and self.store_secret_key)

    def scaffold_argv(self, project_name: str) -> list[str]:
        """Scaffold command with the project name substituted."""
        return [part.replace("{project}", project_name) for part in self.scaffold_command]


def get_settings() -> Settings:
    """Load service configuration from environment."""
    scaffold = os.getenv("SCAFFOLD_COMMAND") or DEFAULT_SCAFFOLD_COMMAND

    return Settings(
        store_endpoint=os.getenv("STORE_ENDPOINT", "localhost:9000"),
        store_access_key=os.getenv("STORE_ACCESS_KEY"),
        store_secret_key=os.getenv("STORE_SECRET_KEY"),
        store_region=os.getenv("STORE_REGION", "auto"),
        store_secure=_env_bool("STORE_SECURE", False),
        bucket=os.getenv("STORE_BUCKET", "ai-doc-automation"),
        connect_timeout_s=_env_int("STORE_CONNECT_TIMEOUT_SECONDS", 10),
        request_timeout_s=_env_int("REQUEST_TIMEOUT_SECONDS", 30),
        max_attempts=_env_int("STORE_MAX_ATTEMPTS", 3),
        publish_concurrency=_env_int("PUBLISH_CONCURRENCY", 8),
        build_tool=os.getenv("BUILD_TOOL", "bun"),
        build_output_dir=os.getenv("BUILD_OUTPUT_DIR", "build"),
        step_timeout_s=_env_int("STEP_TIMEOUT_SECONDS", 600),
        scaffold_command=tuple(shlex.split(scaffold)),
        api_subdomain=os.getenv("API_SUBDOMAIN", "api").lower(),
        api_key=os.getenv("SITE_API_KEY") or None,
    )

"""
Build Runner - fetch, build and publish a tenant's static site.

Pipeline per request:
    CREATE_WORKSPACE -> FETCH_SOURCE -> RUN_BUILD_STEPS -> PUBLISH_ARTIFACT -> CLEANUP

- One temporary workspace per invocation, removed on every exit path
- Build steps run as plain subprocesses (no shell), fail-fast
- Build output published under <project>/build-output, never over raw source
- Cleanup failures are logged CRITICAL and never replace the pipeline result
"""
import asyncio
import logging
import os
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from app.core.config import Settings, get_settings
from app.core.metrics import metrics
from app.core.transfer import TransferError, fetch_tree, publish_tree
from app.storage.object_store import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

BUILD_OUTPUT_PREFIX = "build-output"
WORKSPACE_PREFIX = "project-build-"
SCAFFOLD_WORKSPACE_PREFIX = "docs-scaffold-"

COMMAND_TIMEOUT = 600  # seconds per build step
EXIT_TIMED_OUT = -1
EXIT_NOT_FOUND = 127

# Project names become key prefixes, directory names and hostname labels;
# hostnames are case-insensitive, so names are lowercase only
PROJECT_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")


class PipelineStatus(str, Enum):
    """Pipeline / step execution status."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Errors
# =============================================================================

class BuildPipelineError(Exception):
    """Base error for a failed pipeline run.

    `category` names the failing stage; `public_message` is safe to show
    to API callers (no paths, no internals).
    """
    category = "internal"
    public_message = "An internal error occurred during the build"


class ProjectNameError(BuildPipelineError):
    """Project name missing or malformed."""
    category = "validation"
    public_message = "Invalid project name"


class WorkspaceError(BuildPipelineError):
    """Temporary workspace could not be created."""
    category = "workspace"
    public_message = "Could not allocate a build workspace"


class SourceFetchError(BuildPipelineError):
    """Project source could not be fetched from the bucket."""
    category = "fetch"
    public_message = "Failed to fetch project source"


class BuildStepError(BuildPipelineError):
    """A build step exited non-zero."""
    category = "build_step"

    def __init__(self, step: str, exit_code: int, message: Optional[str] = None):
        self.step = step
        self.exit_code = exit_code
        super().__init__(message or f"Build step '{step}' failed with exit code {exit_code}")

    @property
    def public_message(self) -> str:
        return f"Build step '{self.step}' failed with exit code {self.exit_code}"


class ArtifactPublishError(BuildPipelineError):
    """Build output could not be uploaded."""
    category = "publish"
    public_message = "Failed to publish build output"


# =============================================================================
# Data
# =============================================================================

@dataclass
class CommandResult:
    """Result of a subprocess command."""
    command: list[str]
    exit_code: int
    duration_ms: int
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class PipelineStep:
    """A single step in the build sequence."""
    name: str
    command: list[str]
    description: str = ""
    status: PipelineStatus = PipelineStatus.PENDING
    result: Optional[CommandResult] = None
    error: Optional[str] = None


@dataclass
class StepsOutcome:
    """Outcome of a fail-fast step chain."""
    ok: bool
    steps: list[PipelineStep]
    failed_step: Optional[str] = None
    exit_code: Optional[int] = None


@dataclass
class BuildResult:
    """Result of a successful pipeline run."""
    project_name: str
    artifact_prefix: str
    files_fetched: int
    files_published: int
    steps: list[PipelineStep] = field(default_factory=list)
    status: PipelineStatus = PipelineStatus.SUCCESS
    total_duration_ms: int = 0


# =============================================================================
# Validation and layout
# =============================================================================

def validate_project_name(name: Optional[str]) -> str:
    """Validate and return sanitized project name."""
    if not name or not name.strip():
        raise ProjectNameError("Project name is required")

    name = name.strip()
    if not PROJECT_NAME_PATTERN.match(name):
        raise ProjectNameError(
            "Project name must start with a lowercase letter or digit and contain only "
            "lowercase letters, numbers, hyphens, and underscores (max 64 chars)"
        )
    return name


def build_output_prefix(project_name: str) -> str:
    """Key prefix for a project's published build output."""
    return f"{project_name}/{BUILD_OUTPUT_PREFIX}"


def default_build_steps(build_tool: str = "bun") -> list[PipelineStep]:
    """Install, build, then drop node_modules."""
    return [
        PipelineStep(
            name="install",
            command=[build_tool, "install"],
            description="Install dependencies",
        ),
        PipelineStep(
            name="build",
            command=[build_tool, "run", "build"],
            description="Build the site",
        ),
        prune_step(),
    ]


def prune_step() -> PipelineStep:
    return PipelineStep(
        name="prune",
        command=["rm", "-rf", "node_modules"],
        description="Remove installed dependencies",
    )


# =============================================================================
# Workspace Management
# =============================================================================

def cleanup_workspace(path: Path) -> bool:
    """
    Remove a workspace tree. Never raises.

    A failure is a leaked directory that needs manual attention; it is
    logged CRITICAL and counted, not propagated.
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError as e:
        metrics.inc("workspace_cleanup_failed_total")
        logger.critical(
            f"workspace_cleanup_failed workspace={path.name} "
            f"error_type={type(e).__name__} manual intervention required"
        )
        return False
    logger.info(f"workspace_cleaned workspace={path.name}")
    return True


@contextmanager
def workspace(prefix: str = WORKSPACE_PREFIX) -> Iterator[Path]:
    """
    Exclusively-owned temporary directory for one pipeline run.

    Created on entry, removed exactly once on exit (normal or error).

    Raises:
        WorkspaceError: directory could not be created
    """
    try:
        path = Path(tempfile.mkdtemp(prefix=prefix))
    except OSError as e:
        logger.error(f"workspace_create_failed error_type={type(e).__name__}")
        raise WorkspaceError("Failed to create temporary workspace") from e

    logger.info(f"workspace_created workspace={path.name}")
    try:
        yield path
    finally:
        cleanup_workspace(path)


# =============================================================================
# Command Execution
# =============================================================================

def _build_env() -> dict:
    """Environment for build subprocesses."""
    env = dict(os.environ)
    env["CI"] = "true"
    return env


def run_command(
    cmd: list[str],
    cwd: Path,
    timeout: int = COMMAND_TIMEOUT,
) -> CommandResult:
    """
    Execute a command with no shell, streaming its output to ours.

    Standard streams are inherited so operators see build output as it
    happens; nothing is captured or parsed.
    """
    if not isinstance(cmd, list):
        raise ValueError("Command must be a list, not a string")
    if len(cmd) == 0:
        raise ValueError("Command cannot be empty")

    logger.info(f"command_start cmd={' '.join(cmd)}")
    start_time = datetime.now(timezone.utc)
    timed_out = False

    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=_build_env(),
            timeout=timeout,
        )
        exit_code = result.returncode
    except subprocess.TimeoutExpired:
        exit_code = EXIT_TIMED_OUT
        timed_out = True
        logger.warning(f"command_timeout cmd={cmd[0]} timeout={timeout}")
    except FileNotFoundError:
        exit_code = EXIT_NOT_FOUND
        logger.warning(f"command_not_found cmd={cmd[0]}")

    duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)

    return CommandResult(
        command=cmd,
        exit_code=exit_code,
        duration_ms=duration_ms,
        timed_out=timed_out,
    )


def run_steps(
    steps: list[PipelineStep],
    cwd: Path,
    timeout: int = COMMAND_TIMEOUT,
) -> StepsOutcome:
    """Run steps in order; the first failure stops the chain."""
    for index, step in enumerate(steps):
        step.status = PipelineStatus.RUNNING
        result = run_command(step.command, cwd=cwd, timeout=timeout)
        step.result = result

        if result.ok:
            step.status = PipelineStatus.SUCCESS
            continue

        step.status = PipelineStatus.FAILED
        step.error = (
            "Timed out" if result.timed_out
            else f"Exited with code {result.exit_code}"
        )
        metrics.inc("build_steps_failed_total")
        logger.error(
            f"build_step_failed step={step.name} exit_code={result.exit_code}",
            extra={"step": step.name, "exit_code": result.exit_code},
        )
        for skipped in steps[index + 1:]:
            skipped.status = PipelineStatus.SKIPPED
            skipped.error = "Skipped due to previous failure"
        return StepsOutcome(
            ok=False,
            steps=steps,
            failed_step=step.name,
            exit_code=result.exit_code,
        )

    return StepsOutcome(ok=True, steps=steps)


# =============================================================================
# Main Build Function
# =============================================================================

async def run_build(
    store: ObjectStore,
    bucket: str,
    project_name: str,
    steps: Optional[list[PipelineStep]] = None,
    settings: Optional[Settings] = None,
) -> BuildResult:
    """
    Fetch a project's source, build it, and publish the output.

    Args:
        store: Object store client (shared, read-only)
        bucket: Bucket holding tenant trees
        project_name: Tenant project; source lives under <project_name>/
        steps: Build sequence (defaults to install/build/prune)
        settings: Service settings (defaults to environment)

    Returns:
        BuildResult with transfer counts and step results

    Raises:
        ProjectNameError: before any resource is allocated
        WorkspaceError, SourceFetchError, BuildStepError, ArtifactPublishError:
            after the workspace has been removed
    """
    settings = settings or get_settings()
    project_name = validate_project_name(project_name)
    steps = steps if steps is not None else default_build_steps(settings.build_tool)
    output_prefix = build_output_prefix(project_name)
    log_extra = {"project": project_name}

    metrics.inc("builds_started_total")
    start_time = datetime.now(timezone.utc)
    logger.info(f"build_started project={project_name}", extra=log_extra)

    try:
        with workspace() as root:
            try:
                # Trailing slash keeps "docs" from listing "docs-site/..."
                fetched = await fetch_tree(
                    store,
                    bucket,
                    f"{project_name}/",
                    root,
                    exclusions=[f"{output_prefix}/"],
                    timeout=settings.request_timeout_s,
                )
            except (ObjectStoreError, TransferError) as e:
                raise SourceFetchError(f"Fetch failed: {type(e).__name__}") from e

            project_dir = root / project_name
            if not project_dir.is_dir():
                raise SourceFetchError("No source objects found for project")

            outcome = await asyncio.to_thread(
                run_steps, steps, project_dir, settings.step_timeout_s
            )
            if not outcome.ok:
                raise BuildStepError(outcome.failed_step, outcome.exit_code)

            try:
                published = await publish_tree(
                    store,
                    project_dir / settings.build_output_dir,
                    bucket,
                    output_prefix,
                    concurrency=settings.publish_concurrency,
                    timeout=settings.request_timeout_s,
                )
            except (ObjectStoreError, TransferError) as e:
                raise ArtifactPublishError(f"Publish failed: {e}") from e
    except BuildPipelineError as e:
        metrics.inc("builds_failed_total")
        logger.error(
            f"build_failed project={project_name} category={e.category}",
            extra=log_extra,
        )
        raise
    except Exception:
        metrics.inc("builds_failed_total")
        logger.exception(f"build_error project={project_name}", extra=log_extra)
        raise

    duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
    metrics.inc("builds_succeeded_total")
    logger.info(
        f"build_succeeded project={project_name} fetched={fetched} "
        f"published={published} duration_ms={duration_ms}",
        extra=log_extra,
    )

    return BuildResult(
        project_name=project_name,
        artifact_prefix=output_prefix,
        files_fetched=fetched,
        files_published=published,
        steps=steps,
        total_duration_ms=duration_ms,
    )


async def create_project(
    store: ObjectStore,
    bucket: str,
    project_name: str,
    settings: Optional[Settings] = None,
) -> int:
    """
    Scaffold a new documentation project and upload it as raw source.

    The scaffold command runs in a fresh workspace; the generated project
    (minus node_modules) is published under <project_name>/.

    Returns:
        Number of files published
    """
    settings = settings or get_settings()
    project_name = validate_project_name(project_name)
    log_extra = {"project": project_name}
    metrics.inc("scaffolds_started_total")
    logger.info(f"scaffold_started project={project_name}", extra=log_extra)

    try:
        published = await _scaffold_and_publish(store, bucket, project_name, settings)
    except BuildPipelineError as e:
        metrics.inc("scaffolds_failed_total")
        logger.error(
            f"scaffold_failed project={project_name} category={e.category}",
            extra=log_extra,
        )
        raise
    except Exception:
        metrics.inc("scaffolds_failed_total")
        logger.exception(f"scaffold_error project={project_name}", extra=log_extra)
        raise

    metrics.inc("scaffolds_succeeded_total")
    logger.info(f"scaffold_published project={project_name} files={published}", extra=log_extra)
    return published


async def _scaffold_and_publish(
    store: ObjectStore,
    bucket: str,
    project_name: str,
    settings: Settings,
) -> int:
    with workspace(prefix=SCAFFOLD_WORKSPACE_PREFIX) as root:
        scaffold = PipelineStep(
            name="scaffold",
            command=settings.scaffold_argv(project_name),
            description="Generate project skeleton",
        )
        outcome = await asyncio.to_thread(
            run_steps, [scaffold], root, settings.step_timeout_s
        )
        if not outcome.ok:
            raise BuildStepError(outcome.failed_step, outcome.exit_code)

        project_dir = root / project_name
        if not project_dir.is_dir():
            raise BuildStepError(
                "scaffold", 0, "Scaffold command produced no project directory"
            )

        outcome = await asyncio.to_thread(
            run_steps, [prune_step()], project_dir, settings.step_timeout_s
        )
        if not outcome.ok:
            raise BuildStepError(outcome.failed_step, outcome.exit_code)

        try:
            published = await publish_tree(
                store,
                project_dir,
                bucket,
                project_name,
                concurrency=settings.publish_concurrency,
                timeout=settings.request_timeout_s,
            )
        except (ObjectStoreError, TransferError) as e:
            raise ArtifactPublishError(f"Publish failed: {e}") from e

    return published

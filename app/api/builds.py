"""
Build pipeline API routes.

Endpoints:
- POST /build - Fetch, build and publish a tenant project
- POST /docs - Scaffold a new documentation project and upload its source
- GET /storage/health - Object store connectivity probe
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.build_runner import (
    BuildPipelineError,
    BuildResult,
    ProjectNameError,
    create_project,
    run_build,
)
from app.core.config import Settings
from app.schemas.build import (
    BuildResponse,
    ErrorResponse,
    ProjectRequest,
    ScaffoldResponse,
    StepSummary,
)
from app.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["builds"])


def get_object_store(request: Request) -> ObjectStore:
    """Shared store client, created once at startup."""
    return request.app.state.object_store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_project_request(request: Request) -> ProjectRequest:
    """
    projectName from a JSON body or from form fields.

    Both encodings go through the same ProjectRequest validation; failures
    surface as RequestValidationError (400).
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        payload = dict(form)
    else:
        try:
            payload = await request.json()
        except ValueError:
            raise RequestValidationError(
                [{"loc": ("body",), "msg": "Body must be JSON or form data", "type": "json_invalid"}]
            )

    try:
        return ProjectRequest.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(
            [{**error, "loc": ("body", *error["loc"])} for error in e.errors()]
        ) from e


def error_response(status_code: int, category: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=category, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def pipeline_error_response(e: BuildPipelineError) -> JSONResponse:
    """Map a pipeline error to its HTTP response (no paths, no traces)."""
    status_code = 400 if isinstance(e, ProjectNameError) else 500
    return error_response(status_code, e.category, e.public_message)


def summarize_steps(result: BuildResult) -> list[StepSummary]:
    return [
        StepSummary(
            name=step.name,
            status=step.status.value,
            exit_code=step.result.exit_code if step.result else None,
            duration_ms=step.result.duration_ms if step.result else None,
        )
        for step in result.steps
    ]


@router.post("/build", response_model=BuildResponse, responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def build_project(
    body: ProjectRequest = Depends(read_project_request),
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
):
    """
    Build a project and publish its output.

    Runs to completion before responding: fetch source from
    <projectName>/, build, publish to <projectName>/build-output/.
    """
    try:
        result = await run_build(store, settings.bucket, body.project_name, settings=settings)
    except BuildPipelineError as e:
        return pipeline_error_response(e)
    except Exception:
        logger.exception(f"build_unexpected_error project={body.project_name}")
        return error_response(500, "internal", "An error occurred during the build or upload process")

    response = BuildResponse(
        project_name=result.project_name,
        files_fetched=result.files_fetched,
        files_published=result.files_published,
        steps=summarize_steps(result),
    )
    return JSONResponse(content=response.model_dump(by_alias=True))


@router.post("/docs", response_model=ScaffoldResponse, responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def scaffold_project(
    body: ProjectRequest = Depends(read_project_request),
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
):
    """Create a new documentation project and upload it as source."""
    try:
        published = await create_project(store, settings.bucket, body.project_name, settings=settings)
    except BuildPipelineError as e:
        return pipeline_error_response(e)
    except Exception:
        logger.exception(f"scaffold_unexpected_error project={body.project_name}")
        return error_response(500, "internal", "An error occurred during the build or upload process")

    response = ScaffoldResponse(project_name=body.project_name, files_published=published)
    return JSONResponse(content=response.model_dump(by_alias=True))


@router.get("/storage/health")
async def storage_health(
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
):
    """Check that the configured bucket is reachable."""
    result = await asyncio.to_thread(store.probe, settings.bucket)
    status_code = 200 if result.get("ok") else result.get("status_code", 502)
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "success" if result.get("ok") else "error",
            "message": result.get("message", ""),
        },
    )

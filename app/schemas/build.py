"""
Pydantic schemas for build and scaffold API requests and responses.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.build_runner import PROJECT_NAME_PATTERN


class ProjectRequest(BaseModel):
    """Request body for POST /build and POST /docs."""

    model_config = ConfigDict(populate_by_name=True)

    project_name: str = Field(
        ...,
        alias="projectName",
        description="Tenant project name; also its key prefix in the bucket",
        min_length=1,
        max_length=64,
    )

    @field_validator("project_name", mode="before")
    @classmethod
    def strip_project_name(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("project_name")
    @classmethod
    def validate_project_name(cls, v: str) -> str:
        if not PROJECT_NAME_PATTERN.match(v):
            raise ValueError(
                "Project name must start with a lowercase letter or digit and contain only "
                "lowercase letters, numbers, hyphens, and underscores"
            )
        return v


class StepSummary(BaseModel):
    """One build step as reported to callers."""
    name: str
    status: str
    exit_code: Optional[int] = None
    duration_ms: Optional[int] = None


class BuildResponse(BaseModel):
    """Successful build and publish."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    message: str = "Build and upload successful"
    project_name: str = Field(..., serialization_alias="projectName")
    files_fetched: int = Field(0, serialization_alias="filesFetched")
    files_published: int = Field(0, serialization_alias="filesPublished")
    steps: List[StepSummary] = Field(default_factory=list)


class ScaffoldResponse(BaseModel):
    """Successful scaffold and upload."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    message: str = "Project created and uploaded successfully"
    project_name: str = Field(..., serialization_alias="projectName")
    files_published: int = Field(0, serialization_alias="filesPublished")


class ErrorResponse(BaseModel):
    """Failure with a reason category and a safe, human-readable message."""
    ok: bool = False
    error: str = Field(..., description="validation, fetch, build_step, publish, workspace, internal")
    message: str

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from ghbridge.core.state import ClaimOutcome, JobStatus


class Job(BaseModel):
    """Fila completa de la tabla ``jobs``."""

    id: str
    params: dict[str, Any]
    status: JobStatus = JobStatus.QUEUED
    created_at: str | None = None
    processed_at: str | None = None
    error: str | None = None


class ClaimedJob(BaseModel):
    id: str
    params: dict[str, Any]


class ClaimResult(BaseModel):
    outcome: ClaimOutcome
    job: ClaimedJob | None = None
    error: str | None = None

    def __bool__(self) -> bool:
        return self.job is not None


class CherryPickParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repository: str = Field(min_length=1, description="Repository name")
    target_branch: str = Field(
        alias="targetBranch", min_length=1, description="Target branch for cherry-pick"
    )
    pr_filter_query: str = Field(
        alias="prFilterQuery", min_length=1, description="Pull request filter query"
    )
    callback_url: HttpUrl | None = Field(
        default=None, alias="callbackUrl", description="Optional callback URL"
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatusReply(BaseModel):
    job_id: str = Field(serialization_alias="jobId")
    status: Literal["queued", "failed", "running"]
    message: str

"""Pydantic models for the groundedqa API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from groundedqa.models import ChatTurnResult, DocumentRecord, ProjectRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateProjectRequest(_CamelModel):
    name: str = Field(..., description="Display name, 1-100 characters after trimming")


class ProjectResponse(_CamelModel):
    id: str
    name: str
    created_at: datetime = Field(..., alias="createdAt")
    document_count: int = Field(..., ge=0, alias="documentCount")

    @classmethod
    def from_record(cls, record: ProjectRecord) -> "ProjectResponse":
        return cls(
            id=record.project_id,
            name=record.name,
            created_at=record.created_at,
            document_count=record.document_count,
        )


class DocumentResponse(_CamelModel):
    id: str
    project_id: str = Field(..., alias="projectId")
    filename: str
    source_kind: str = Field(..., alias="sourceKind")
    status: str
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    uploaded_at: datetime = Field(..., alias="uploadedAt")

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "DocumentResponse":
        return cls(
            id=record.document_id,
            project_id=record.project_id,
            filename=record.filename,
            source_kind=record.source_kind.value,
            status=record.status.value,
            error_message=record.error_message,
            uploaded_at=record.uploaded_at,
        )


class ChatRequest(_CamelModel):
    project_id: str = Field(..., alias="projectId")
    message: str


class ChatResponse(_CamelModel):
    answer: str
    source_count: int = Field(..., ge=0, alias="sourceCount")

    @classmethod
    def from_result(cls, result: ChatTurnResult) -> "ChatResponse":
        return cls(answer=result.answer, source_count=result.source_count)


class BreakerResponse(_CamelModel):
    name: str
    state: str
    failure_count: int = Field(..., alias="failureCount")
    success_count: int = Field(..., alias="successCount")
    last_failure_time: Optional[float] = Field(default=None, alias="lastFailureTime")
    last_success_time: Optional[float] = Field(default=None, alias="lastSuccessTime")
    next_attempt_time: Optional[float] = Field(default=None, alias="nextAttemptTime")

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any]) -> "BreakerResponse":
        return cls(**snapshot)


class BreakerListResponse(BaseModel):
    breakers: List[BreakerResponse]


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail

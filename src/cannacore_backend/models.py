from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import as_list


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILED)


class SessionState(str, Enum):
    OPEN = "open"
    COMPLETE = "complete"
    FINALIZED = "finalized"
    DISCARDED = "discarded"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChunkReceipt(_CamelModel):
    success: bool = True
    upload_id: str = Field(alias="uploadId")
    chunk_index: int = Field(alias="chunkIndex")
    received_chunks: int = Field(alias="receivedChunks")
    total_chunks: int = Field(alias="totalChunks")
    progress: int


class FinalizeRequest(_CamelModel):
    upload_id: Optional[str] = Field(default=None, alias="uploadId")
    file_type: Optional[str] = Field(default=None, alias="fileType")


class FinalizedUpload(_CamelModel):
    success: bool = True
    upload_id: str = Field(alias="uploadId")
    url: str
    file_name: str = Field(alias="fileName")
    size: int


class ComplianceSubmission(BaseModel):
    imageurl: List[str] = Field(default_factory=list)
    coaurl: List[str] = Field(default_factory=list)
    labelurl: Optional[List[str]] = None
    jurisdictions: List[str] = Field(default_factory=list)
    company_name: Optional[str] = None
    product_type: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None

    @field_validator("imageurl", "coaurl", "jurisdictions", mode="before")
    @classmethod
    def _scalar_to_list(cls, value: Any) -> List[Any]:
        return as_list(value)


class SubmissionAccepted(_CamelModel):
    success: bool = True
    status: JobStatus
    request_id: Optional[str] = Field(default=None, alias="requestId")
    result: Optional[Any] = None
    message: Optional[str] = None


class PollResult(BaseModel):
    success: bool
    status: JobStatus
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None


class ReportRequest(BaseModel):
    content: Optional[str] = None


class SessionSnapshot(BaseModel):
    upload_id: str
    state: SessionState
    file_name: str
    file_kind: Optional[str] = None
    total_chunks: int
    received_count: int
    created_at: datetime


class TrackedSubmissionSummary(BaseModel):
    job_id: str
    status: JobStatus
    object_urls: List[str]
    created_at: datetime

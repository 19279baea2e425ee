"""Request and response payloads specific to the HTTP surface."""

from pydantic import BaseModel, Field


class BulkDeleteRequest(BaseModel):
    job_ids: list[str] = Field(..., min_length=1)


class BulkDeleteResponse(BaseModel):
    deleted_count: int


class CleanupRequest(BaseModel):
    older_than_days: int = Field(30, ge=0, description="Delete terminal jobs created before this many days ago")


class CleanupResponse(BaseModel):
    cleaned_count: int


class MessageResponse(BaseModel):
    message: str

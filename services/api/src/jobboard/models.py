from __future__ import annotations

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class JobRecord(BaseModel):
    job_id: str = Field(..., min_length=1, description="External job identifier")
    job_title: str
    company: str
    location: str
    job_type: str
    description: str
    requirements: str
    how_to_apply: str
    source_url: str
    closing_date: str = ""
    posted_date: str = ""
    salary: str = ""
    experience_level: str = ""
    industry: str = ""


class Job(JobRecord):
    created_at: str
    updated_at: str


class User(BaseModel):
    id: str
    email: str | None = None
    created_at: str
    updated_at: str


class UserSummary(BaseModel):
    id: str
    email: str | None = None


class CV(BaseModel):
    user_id: str
    cv_content: str
    file_name: str | None = None
    file_type: str | None = None
    created_at: str
    updated_at: str


class MessageResponse(BaseModel):
    message: str


class UserSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(default=None, alias="userId")
    email: EmailStr | None = None


class UserSyncResponse(BaseModel):
    message: str
    user: UserSummary


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr | None = None

    def updates(self) -> dict[str, str | None]:
        return self.model_dump(exclude_unset=True)


class SaveJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str | None = Field(default=None, alias="jobId")


class CVUploadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cv_content: str | None = Field(default=None, alias="cvContent")
    file_name: str | None = Field(default=None, alias="fileName", max_length=255)
    file_type: str | None = Field(default=None, alias="fileType", max_length=120)


class CVUploadResponse(BaseModel):
    message: str
    cv: CV


class CVContentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cv_content: str = Field(..., alias="cvContent")


class IngestRequest(BaseModel):
    batches: list[str] = Field(default_factory=list)


class IngestResult(BaseModel):
    message: str
    ingested: int
    skipped: bool

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
from decimal import Decimal
from enum import Enum


class GenerationMode(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class GenerationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

class ImageDescriptor(BaseModel):
    original_name: str = Field(..., description="File name as uploaded by the user")
    stored_name: str = Field(..., description="Generated file name on disk")
    storage_path: str = Field(..., description="Absolute or relative path of the stored file")
    mime_type: str = "image/jpeg"
    byte_size: int = Field(..., description="Size of the stored (re-encoded) file")
    original_byte_size: int = Field(..., description="Size of the upload before processing")
    width: Optional[int] = None
    height: Optional[int] = None
    uploaded_at: datetime

    class Config:
        frozen = True


class ImageSession(BaseModel):
    id: str
    owner: str
    images: List[ImageDescriptor] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime


class ImageSessionSummary(BaseModel):
    session_id: str
    image_count: int
    created_at: datetime
    expires_at: datetime


class ImageSessionCreatedResponse(BaseModel):
    session_id: str
    images: List[ImageDescriptor]
    expires_at: datetime


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationPayload(BaseModel):
    """Request ready to be sent to the chat completions API."""
    model: str
    messages: List[Dict[str, Any]]
    max_completion_tokens: int
    temperature: float
    image_count: int = 0

    def to_openai_kwargs(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": self.messages,
            "max_completion_tokens": self.max_completion_tokens,
            "temperature": self.temperature,
        }


class GenerationResult(BaseModel):
    content: str
    token_usage: TokenUsage
    cost: Decimal
    model: str

    class Config:
        frozen = True


class ContentVersion(BaseModel):
    version: int = Field(..., ge=1)
    content: str
    updated_at: datetime
    updated_by: str
    notes: Optional[str] = None


class Generation(BaseModel):
    id: int
    issue_key: str
    email: str
    project_id: Optional[int] = None
    mode: GenerationMode = GenerationMode.MANUAL
    status: GenerationStatus = GenerationStatus.RUNNING
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    generation_time_seconds: Optional[float] = None
    cost: Optional[Decimal] = None
    token_usage: Optional[TokenUsage] = None
    content: Optional[str] = None
    filename: Optional[str] = None
    error: Optional[str] = None
    versions: List[ContentVersion] = Field(default_factory=list)
    current_version: int = 1

    class Config:
        from_attributes = True


class GenerationCreate(BaseModel):
    issue_key: str
    email: str
    project_id: Optional[int] = None
    mode: GenerationMode = GenerationMode.MANUAL
    status: GenerationStatus = GenerationStatus.RUNNING
    started_at: Optional[datetime] = None


class GenerationUpdate(BaseModel):
    status: Optional[GenerationStatus] = None
    completed_at: Optional[datetime] = None
    generation_time_seconds: Optional[float] = None
    cost: Optional[Decimal] = None
    token_usage: Optional[TokenUsage] = None
    content: Optional[str] = None
    filename: Optional[str] = None
    error: Optional[str] = None
    versions: Optional[List[ContentVersion]] = None
    current_version: Optional[int] = None


class GenerateTestCasesRequest(BaseModel):
    issue_key: str = Field(..., min_length=1, description="Jira issue key, e.g. PROJ-123")
    auto_mode: bool = Field(default=False, description="Automation-oriented output instead of broad manual QA")
    image_session_id: Optional[str] = Field(None, description="Image session created by an earlier upload")


class GenerateTestCasesResponse(BaseModel):
    generation_id: int
    issue_key: str
    filename: str
    content: str
    generation_time_seconds: float
    cost: Optional[Decimal] = None
    token_usage: Optional[TokenUsage] = None
    images_used: int = 0


class PreflightRequest(BaseModel):
    issue_key: str = Field(..., min_length=1)


class PreflightResponse(BaseModel):
    issue_key: str
    title: str
    description: str
    attachments: int
    image_attachments: int
    estimated_tokens: int
    estimated_cost: str


class EditContentRequest(BaseModel):
    content: str
    notes: Optional[str] = None


class TestCaseRecord(BaseModel):
    __test__ = False  # not a pytest class
    id: str
    title: str = ""
    priority: str = ""
    preconditions: str = ""
    steps: str = ""
    expected_result: str = ""


# ---------------------------------------------------------------------------
# Issues and projects
# ---------------------------------------------------------------------------

class IssueAttachment(BaseModel):
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None


class Issue(BaseModel):
    key: str
    summary: str = ""
    description: str = ""
    acceptance_criteria: str = ""
    attachments: List[IssueAttachment] = Field(default_factory=list)

    @property
    def image_attachments(self) -> List[IssueAttachment]:
        return [a for a in self.attachments if (a.mime_type or "").startswith("image/")]


class IssueLookup(BaseModel):
    success: bool
    issue: Optional[Issue] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class Project(BaseModel):
    id: int
    project_key: str
    name: Optional[str] = None
    created_by: Optional[str] = None
    first_generated_at: Optional[datetime] = None
    last_generated_at: Optional[datetime] = None
    total_generations: int = 0

    class Config:
        from_attributes = True

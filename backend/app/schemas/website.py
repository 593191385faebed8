"""Schemas for websites, their files and preview runtime."""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from app.constants import WebsiteStatus
from app.schemas.change import ChangeHistoryResponse
from app.utils.serialization import serialize_datetime


class WebsiteFileInput(BaseModel):
    """One uploaded or saved file."""
    name: str = Field(..., description="Relative path inside the project")
    content: str = ""


class WebsiteCreate(BaseModel):
    """Request schema for creating a website from uploaded files."""
    name: str
    description: Optional[str] = None
    status: str = WebsiteStatus.ACTIVE
    files: List[WebsiteFileInput]
    start: bool = Field(True, description="Start the preview right away")


class WebsiteUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None


class WebsiteFilesSave(BaseModel):
    """Bulk save from the editor."""
    files: List[WebsiteFileInput]


class WebsiteFilesSaveResponse(BaseModel):
    success: bool
    changed_files: List[str]


class WebsiteFileResponse(BaseModel):
    """Website file response."""
    id: str
    name: str
    content: str
    content_type: str
    size: int
    position: int
    updated_at: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_orm(cls, obj) -> "WebsiteFileResponse":
        """Convert SQLAlchemy model to response model."""
        return cls(
            id=str(obj.id),
            name=obj.name,
            content=obj.content,
            content_type=obj.content_type,
            size=obj.size,
            position=obj.position,
            updated_at=serialize_datetime(obj.updated_at),
        )


class WebsiteResponse(BaseModel):
    """Website list item and detail response."""
    id: str
    name: str
    description: Optional[str] = None
    project_type: str
    status: str
    build_status: str
    port: Optional[int] = None
    preview_url: Optional[str] = None
    last_build_at: Optional[str] = None
    build_duration_ms: Optional[int] = None
    structure: Optional[Dict[str, Any]] = None
    file_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_orm(cls, obj) -> "WebsiteResponse":
        """Convert SQLAlchemy model to response model."""
        return cls(
            id=str(obj.id),
            name=obj.name,
            description=obj.description,
            project_type=obj.project_type,
            status=obj.status,
            build_status=obj.build_status,
            port=obj.port,
            preview_url=obj.preview_url,
            last_build_at=serialize_datetime(obj.last_build_at),
            build_duration_ms=obj.build_duration_ms,
            structure=obj.structure,
            file_count=len(obj.files),
            created_at=serialize_datetime(obj.created_at),
            updated_at=serialize_datetime(obj.updated_at),
        )


class BuildStatusResponse(BaseModel):
    """Response schema for /api/websites/{id}/build-status."""
    website_id: str
    status: str
    project_type: str
    preview_url: Optional[str] = None
    port: Optional[int] = None
    last_build_at: Optional[str] = None
    build_duration_ms: Optional[int] = None
    output_lines: List[str] = []

    @classmethod
    def from_view(cls, view) -> "BuildStatusResponse":
        return cls(
            website_id=view.website_id,
            status=view.status,
            project_type=view.project_type,
            preview_url=view.preview_address,
            port=view.port,
            last_build_at=serialize_datetime(view.last_build_at),
            build_duration_ms=view.build_duration_ms,
            output_lines=view.output_lines,
        )


class StopResponse(BaseModel):
    success: bool
    message: str


class RestartResponse(BaseModel):
    success: bool
    status: Optional[str] = None
    preview_url: Optional[str] = None
    error: Optional[str] = None


class PreviewResponse(BaseModel):
    """Where the preview can be reached."""
    kind: str  # proxy | static | unavailable
    status: str
    address: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    reason: Optional[str] = None


class ExportFile(BaseModel):
    name: str
    content: str
    content_type: str
    size: int


class ExportResponse(BaseModel):
    """Response schema for /api/websites/{id}/export."""
    success: bool
    website_name: Optional[str] = None
    files: List[ExportFile] = []
    download_url: Optional[str] = None
    error: Optional[str] = None


class WebsiteDetailResponse(WebsiteResponse):
    """Website detail with its files and latest changes."""
    files: List[WebsiteFileResponse] = []
    recent_changes: List[ChangeHistoryResponse] = []

"""Schemas for AI edits and change history."""
from pydantic import BaseModel, Field
from typing import Optional, List

from app.utils.serialization import serialize_datetime, serialize_uuid, summarize_modification


class AIEditRequest(BaseModel):
    """Request schema for /api/websites/{id}/ai-edit."""
    file_name: str = Field(..., description="File to edit")
    prompt: str = Field(..., description="Natural-language instruction")
    current_content: Optional[str] = Field(None, description="Editor content, if it differs from the saved file")
    file_type: Optional[str] = Field(None, description="Declared content type; defaults to the file's")


class AIEditResponse(BaseModel):
    """Response schema for /api/websites/{id}/ai-edit."""
    success: bool
    modified_content: Optional[str] = None
    description: Optional[str] = None
    confidence: Optional[float] = None
    processing_time_ms: Optional[int] = None
    change_id: Optional[str] = None
    error: Optional[str] = None


class ChangeHistoryResponse(BaseModel):
    """Change history list item."""
    id: str
    website_id: str
    file_name: str
    sequence: int
    description: str
    prompt: str
    status: str
    confidence: Optional[float] = None
    processing_time_ms: Optional[int] = None
    diff: str = ""
    lines_added: int = 0
    lines_removed: int = 0
    changes: List[str] = []
    created_at: Optional[str] = None
    reverted_at: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_orm(cls, obj) -> "ChangeHistoryResponse":
        """Convert SQLAlchemy model to response model."""
        return cls(
            id=str(obj.id),
            website_id=serialize_uuid(obj.website_id),
            file_name=obj.file_name,
            sequence=obj.sequence,
            description=obj.description,
            prompt=obj.prompt,
            status=obj.status,
            confidence=obj.confidence,
            processing_time_ms=obj.processing_time_ms,
            created_at=serialize_datetime(obj.created_at),
            reverted_at=serialize_datetime(obj.reverted_at),
            **summarize_modification(obj.modification),
        )


class RevertResponse(BaseModel):
    """Response schema for change revert."""
    success: bool
    file_name: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None

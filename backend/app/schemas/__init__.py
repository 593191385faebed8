"""Pydantic schemas for request/response validation."""
from app.schemas.website import WebsiteCreate, WebsiteResponse, BuildStatusResponse
from app.schemas.change import AIEditRequest, AIEditResponse, ChangeHistoryResponse

__all__ = [
    "WebsiteCreate",
    "WebsiteResponse",
    "BuildStatusResponse",
    "AIEditRequest",
    "AIEditResponse",
    "ChangeHistoryResponse",
]

"""AI edit and change history API endpoints."""
from fastapi import APIRouter, Depends

from app.schemas.change import AIEditRequest, AIEditResponse, ChangeHistoryResponse, RevertResponse
from app.services.orchestrator import WebsiteOrchestrator, get_orchestrator
from app.utils.logger import logger

router = APIRouter(prefix="/api/websites", tags=["changes"])


@router.post("/{website_id}/ai-edit", response_model=AIEditResponse)
async def ai_edit(
    website_id: str,
    request: AIEditRequest,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> AIEditResponse:
    """
    Apply a natural-language edit to one file.

    Args:
        website_id: The website to edit
        request: File name, prompt and optional editor content

    Returns:
        The new content and change description, or success=False with the
        reason when the edit was rejected (the file is left unchanged)
    """
    outcome = await orchestrator.ai_edit(
        website_id,
        request.file_name,
        request.prompt,
        current_content=request.current_content,
        file_type=request.file_type,
    )
    if not outcome.success:
        logger.info(f"AI edit of {request.file_name} in website {website_id} not applied: {outcome.error}")
    return AIEditResponse(
        success=outcome.success,
        modified_content=outcome.modified_content,
        description=outcome.description,
        confidence=outcome.confidence,
        processing_time_ms=outcome.processing_time_ms,
        change_id=outcome.change_id,
        error=outcome.error,
    )


@router.get("/{website_id}/changes", response_model=list[ChangeHistoryResponse])
async def get_change_history(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> list[ChangeHistoryResponse]:
    """Change history of a website in application order."""
    return [ChangeHistoryResponse.from_orm(c) for c in orchestrator.get_change_history(website_id)]


@router.post("/{website_id}/changes/{change_id}/revert", response_model=RevertResponse)
async def revert_change(
    website_id: str,
    change_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> RevertResponse:
    """Revert the latest applied change of a file."""
    result = await orchestrator.revert_change(website_id, change_id)
    return RevertResponse(
        success=result.success,
        file_name=result.file_name,
        content=result.content,
        error=result.error,
    )

"""Websites API endpoints: records, files, build runtime, preview and export."""
import re
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.constants import RECENT_CHANGES_LIMIT, WebsiteStatus
from app.database import get_db
from app.models import Website
from app.schemas.change import ChangeHistoryResponse
from app.schemas.website import (
    BuildStatusResponse,
    ExportResponse,
    PreviewResponse,
    RestartResponse,
    StopResponse,
    WebsiteCreate,
    WebsiteDetailResponse,
    WebsiteFileResponse,
    WebsiteFilesSave,
    WebsiteFilesSaveResponse,
    WebsiteResponse,
    WebsiteUpdate,
)
from app.services.orchestrator import WebsiteOrchestrator, build_zip_archive, get_orchestrator
from app.utils.db import get_by_id
from app.utils.exceptions import handle_database_error, validation_error
from app.utils.logger import logger

router = APIRouter(prefix="/api/websites", tags=["websites"])


def _archive_name(website_name: str) -> str:
    name = re.sub(r"[^A-Za-z0-9._-]+", "-", website_name).strip("-")
    return f"{name or 'website'}.zip"


@router.get("", response_model=list[WebsiteResponse])
async def get_websites(
    status: Optional[str] = Query(None, description="Filter by website status"),
    db: Session = Depends(get_db),
) -> list[WebsiteResponse]:
    """
    List websites, newest first.

    Args:
        status: Optional status filter (active, archived, draft)
        db: Database session

    Returns:
        List of websites
    """
    if status is not None and status not in WebsiteStatus.ALL:
        raise validation_error(f"Invalid status: {status}")
    try:
        query = db.query(Website)
        if status:
            query = query.filter(Website.status == status)
        websites = query.order_by(Website.created_at.desc()).all()
        return [WebsiteResponse.from_orm(w) for w in websites]
    except Exception as e:
        logger.error(f"[WEBSITES_API] Failed to list websites: {e}", exc_info=True)
        raise handle_database_error(e, "get_websites")


@router.post("", response_model=WebsiteResponse)
async def create_website(
    request: WebsiteCreate,
    db: Session = Depends(get_db),
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> WebsiteResponse:
    """
    Create a website from uploaded files and start its preview.

    Static sites are running when this returns; process-backed sites are
    building and can be polled through build-status.
    """
    website_id = await orchestrator.create_website(
        name=request.name,
        files=[f.model_dump() for f in request.files],
        description=request.description,
        status=request.status,
        start=request.start,
    )
    website = get_by_id(db, Website, website_id)
    return WebsiteResponse.from_orm(website)


@router.get("/{website_id}", response_model=WebsiteDetailResponse)
async def get_website(
    website_id: str,
    db: Session = Depends(get_db),
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> WebsiteDetailResponse:
    """Website detail with files and the latest changes (newest first)."""
    website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
    recent = orchestrator.get_change_history(website_id, limit=RECENT_CHANGES_LIMIT)
    return WebsiteDetailResponse(
        **WebsiteResponse.from_orm(website).model_dump(),
        files=[WebsiteFileResponse.from_orm(f) for f in website.files],
        recent_changes=[ChangeHistoryResponse.from_orm(c) for c in reversed(recent)],
    )


@router.patch("/{website_id}", response_model=WebsiteResponse)
async def update_website(
    website_id: str,
    website_update: WebsiteUpdate,
    db: Session = Depends(get_db),
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> WebsiteResponse:
    """Update name, description or status. Archiving stops the preview."""
    await orchestrator.update_website(
        website_id,
        name=website_update.name,
        description=website_update.description,
        status=website_update.status,
    )
    website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
    return WebsiteResponse.from_orm(website)


@router.delete("/{website_id}")
async def delete_website(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> dict[str, str]:
    """
    Delete a website: stop its process, release its port, remove its files and workspace.

    Change history is kept.
    """
    await orchestrator.delete_website(website_id)
    logger.info(f"[WEBSITES_API] Website {website_id} deleted")
    return {"message": "Website deleted successfully"}


@router.get("/{website_id}/files", response_model=list[WebsiteFileResponse])
async def get_website_files(
    website_id: str,
    db: Session = Depends(get_db),
) -> list[WebsiteFileResponse]:
    website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
    return [WebsiteFileResponse.from_orm(f) for f in website.files]


@router.put("/{website_id}/files", response_model=WebsiteFilesSaveResponse)
async def save_website_files(
    website_id: str,
    request: WebsiteFilesSave,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> WebsiteFilesSaveResponse:
    """Bulk save from the editor. Running previews pick the change up."""
    changed = await orchestrator.save_files(website_id, [f.model_dump() for f in request.files])
    return WebsiteFilesSaveResponse(success=True, changed_files=changed)


@router.get("/{website_id}/build-status", response_model=BuildStatusResponse)
async def get_build_status(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> BuildStatusResponse:
    """Poll build status, preview address, port, timing and output tail."""
    return BuildStatusResponse.from_view(orchestrator.get_build_status(website_id))


@router.post("/{website_id}/start", response_model=RestartResponse)
async def start_website(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> RestartResponse:
    result = await orchestrator.start_website(website_id)
    return RestartResponse(
        success=result.success,
        status=result.status,
        preview_url=result.preview_address,
        error=result.error,
    )


@router.post("/{website_id}/stop", response_model=StopResponse)
async def stop_website(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> StopResponse:
    result = await orchestrator.stop_website(website_id)
    return StopResponse(success=result.success, message=result.message)


@router.post("/{website_id}/restart", response_model=RestartResponse)
async def restart_website(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> RestartResponse:
    result = await orchestrator.restart_website(website_id)
    return RestartResponse(
        success=result.success,
        status=result.status,
        preview_url=result.preview_address,
        error=result.error,
    )


@router.get("/{website_id}/preview", response_model=PreviewResponse)
async def get_preview(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> PreviewResponse:
    """Resolve the preview target for the gateway. Counts as preview traffic."""
    target = orchestrator.resolve_preview(website_id)
    return PreviewResponse(
        kind=target.kind,
        status=target.status,
        address=target.address,
        host=target.host,
        port=target.port,
        reason=target.reason,
    )


@router.get("/{website_id}/preview/content/{file_path:path}")
async def get_preview_content(
    website_id: str,
    file_path: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Serve a file of a static website directly."""
    content, content_type = orchestrator.read_preview_content(website_id, file_path)
    return Response(content=content, media_type=content_type)


@router.get("/{website_id}/export", response_model=ExportResponse)
async def export_website(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> ExportResponse:
    """Snapshot the current files for download."""
    result = orchestrator.export_website(website_id)
    return ExportResponse(
        success=result.success,
        website_name=result.website_name,
        files=result.files,
        download_url=f"/api/websites/{website_id}/export/download" if result.success else None,
        error=result.error,
    )


@router.get("/{website_id}/export/download")
async def download_website(
    website_id: str,
    orchestrator: WebsiteOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Download the current files as a zip archive."""
    result = orchestrator.export_website(website_id)
    if not result.success:
        raise validation_error(result.error or "Export failed")
    archive = build_zip_archive(result.files)
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{_archive_name(result.website_name)}"'},
    )

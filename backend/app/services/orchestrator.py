"""Orchestration facade: the public entry point for website previews and edits."""
import io
import time
import zipfile
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from app.constants import DEPENDENCY_MANIFEST, WebsiteStatus
from app.database import SessionLocal
from app.models.change_history import ChangeHistory
from app.models.website import Website
from app.models.website_file import WebsiteFile
from app.services.ai_editor import AIEditor
from app.services.change_ledger import ChangeLedger
from app.services.port_allocator import PortAllocator
from app.services.preview import PreviewTarget
from app.services.project_analysis import (
    analyze_structure,
    classify_project,
    detect_content_type,
    find_index_file,
    normalize_file_name,
    validate_package_manifest,
)
from app.services.supervisor import BuildSupervisor
from app.utils.db import get_by_id
from app.utils.exceptions import AppException, NotFoundError, ResourceConflict, ValidationError
from app.utils.logger import logger


@dataclass
class BuildStatusView:
    """Composite view returned by get_build_status."""
    website_id: str
    status: str
    project_type: str
    preview_address: Optional[str] = None
    port: Optional[int] = None
    last_build_at: Optional[datetime] = None
    build_duration_ms: Optional[int] = None
    output_lines: List[str] = field(default_factory=list)


@dataclass
class LaunchResult:
    """Result of a start or restart."""
    success: bool
    status: Optional[str] = None
    preview_address: Optional[str] = None
    error: Optional[str] = None


@dataclass
class StopResult:
    """Result of a stop."""
    success: bool
    message: str


@dataclass
class AIEditOutcome:
    """Result of an AI edit."""
    success: bool
    modified_content: Optional[str] = None
    description: Optional[str] = None
    confidence: Optional[float] = None
    processing_time_ms: Optional[int] = None
    change_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RevertResult:
    """Result of a change revert."""
    success: bool
    file_name: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ExportResult:
    """Snapshot of a website's files for packaging."""
    success: bool
    website_name: Optional[str] = None
    files: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None


def build_zip_archive(files: List[Dict[str, Any]]) -> bytes:
    """Package an export snapshot as a zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for file in files:
            archive.writestr(file["name"], file["content"])
    return buffer.getvalue()


def _normalize_files(files: List[Dict[str, Any]]) -> Dict[str, str]:
    normalized: Dict[str, str] = {}
    for item in files:
        name = normalize_file_name(item.get("name", ""))
        if name in normalized:
            raise ValidationError(f"Duplicate file name: {name}")
        normalized[name] = item.get("content") or ""
    return normalized


class WebsiteOrchestrator:
    """Coordinates the port allocator, supervisor, resolver and ledger.

    Start, stop and restart of one website never overlap: a second call while
    one is in flight fails with ResourceConflict. Different websites proceed
    independently.
    """

    def __init__(
        self,
        supervisor: Optional[BuildSupervisor] = None,
        editor: Optional[AIEditor] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self._session_factory = session_factory
        self.supervisor = supervisor or BuildSupervisor(PortAllocator(), session_factory=session_factory)
        self.allocator = self.supervisor.allocator
        self.resolver = self.supervisor.resolver
        self.ledger = ChangeLedger(
            editor=editor,
            session_factory=session_factory,
            on_files_changed=self.files_changed,
        )
        self._in_flight: Set[str] = set()

    @asynccontextmanager
    async def _exclusive(self, website_id: str):
        if website_id in self._in_flight:
            raise ResourceConflict(f"Another start/stop/restart is in progress for website {website_id}")
        self._in_flight.add(website_id)
        try:
            yield
        finally:
            self._in_flight.discard(website_id)

    def _preview_address(self, website_id: str) -> Optional[str]:
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            return self.resolver.resolve(website, port=self.allocator.lease_for(website_id)).address

    # ------------------------------------------------------------------
    # Website records
    # ------------------------------------------------------------------

    async def create_website(
        self,
        name: str,
        files: List[Dict[str, Any]],
        description: Optional[str] = None,
        status: str = WebsiteStatus.ACTIVE,
        start: bool = True,
    ) -> str:
        """
        Persist an uploaded project and start its preview.

        Args:
            name: Unique website name
            files: List of {"name", "content"} dicts
            description: Optional description
            status: Website status (active websites are started right away)
            start: Set False to only persist

        Returns:
            The new website id
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Website name is required")
        if status not in WebsiteStatus.ALL:
            raise ValidationError(f"Invalid status: {status}")

        normalized = _normalize_files(files)
        if not normalized:
            raise ValidationError("At least one file is required")
        project_type = classify_project(normalized)
        if DEPENDENCY_MANIFEST in normalized:
            validate_package_manifest(normalized[DEPENDENCY_MANIFEST])
        elif not find_index_file(list(normalized)):
            raise ValidationError("Static websites need an HTML entry file")

        with self._session_factory() as db:
            if db.query(Website).filter(Website.name == name).first():
                raise ResourceConflict(f"Website name already exists: {name}")

            website = Website(
                name=name,
                description=description,
                project_type=project_type,
                status=status,
                structure=analyze_structure(normalized),
            )
            for position, (file_name, content) in enumerate(normalized.items()):
                file = WebsiteFile(name=file_name, content_type=detect_content_type(file_name), position=position)
                file.set_content(content)
                website.files.append(file)
            db.add(website)
            db.commit()
            website_id = str(website.id)

        logger.info(f"[ORCHESTRATOR] Created {project_type} website {website_id} ({len(normalized)} files)")
        if start and status == WebsiteStatus.ACTIVE:
            await self.start_website(website_id)
        return website_id

    async def update_website(
        self,
        website_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
    ) -> None:
        """Update metadata. Archiving a website stops its preview."""
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            if name is not None and name.strip() != website.name:
                name = name.strip()
                if not name:
                    raise ValidationError("Website name is required")
                if db.query(Website).filter(Website.name == name).first():
                    raise ResourceConflict(f"Website name already exists: {name}")
                website.name = name
            if description is not None:
                website.description = description
            if status is not None:
                if status not in WebsiteStatus.ALL:
                    raise ValidationError(f"Invalid status: {status}")
                website.status = status
            db.commit()

        if status == WebsiteStatus.ARCHIVED:
            await self.stop_website(website_id)

    async def delete_website(self, website_id: str) -> None:
        """
        Stop a website and delete it with its files and workspace.

        Change history rows are kept as the audit trail.

        Raises:
            ResourceConflict: If its process cannot be stopped or an operation is in flight
        """
        website_id = str(website_id)
        with self._session_factory() as db:
            get_by_id(db, Website, website_id, f"Website not found: {website_id}")

        async with self._exclusive(website_id):
            await self.supervisor.stop(website_id, reason="Website deleted")
            with self._session_factory() as db:
                website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
                db.delete(website)
                db.commit()
            await self.supervisor.remove_workspace(website_id)
            self.ledger.forget(website_id)

        logger.info(f"[ORCHESTRATOR] Deleted website {website_id}")

    async def save_files(self, website_id: str, files: List[Dict[str, Any]]) -> List[str]:
        """
        Bulk save from the editor. Creates no history entries.

        Returns:
            Names of files whose content changed
        """
        website_id = str(website_id)
        normalized = _normalize_files(files)
        if DEPENDENCY_MANIFEST in normalized:
            validate_package_manifest(normalized[DEPENDENCY_MANIFEST])

        changed: List[str] = []
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            existing = {f.name: f for f in website.files}
            next_position = max((f.position for f in website.files), default=-1) + 1

            for file_name, content in normalized.items():
                file = existing.get(file_name)
                if file is None:
                    file = WebsiteFile(name=file_name, content_type=detect_content_type(file_name), position=next_position)
                    next_position += 1
                    file.set_content(content)
                    website.files.append(file)
                    existing[file_name] = file
                elif file.content != content:
                    file.set_content(content)
                else:
                    continue
                changed.append(file_name)

            if changed:
                website.structure = analyze_structure({n: f.content for n, f in existing.items()})
                db.commit()

        if changed:
            logger.info(f"[ORCHESTRATOR] Saved {len(changed)} file(s) for website {website_id}")
            await self.files_changed(website_id, changed)
        return changed

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    async def start_website(self, website_id: str) -> LaunchResult:
        website_id = str(website_id)
        try:
            async with self._exclusive(website_id):
                status = await self.supervisor.start(website_id)
        except NotFoundError:
            raise
        except AppException as e:
            logger.warning(f"[ORCHESTRATOR] Start of website {website_id} failed: {e}")
            return LaunchResult(success=False, error=str(e))
        return LaunchResult(success=True, status=status, preview_address=self._preview_address(website_id))

    def get_build_status(self, website_id: str) -> BuildStatusView:
        """Status, preview address, port, timing and output tail of a website."""
        website_id = str(website_id)
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            port = self.allocator.lease_for(website_id)
            target = self.resolver.resolve(website, port=port)
            output_lines = self.supervisor.output_for(website_id)
            if output_lines is None:
                output_lines = list(website.build_output or [])
            return BuildStatusView(
                website_id=website_id,
                status=website.build_status,
                project_type=website.project_type,
                preview_address=target.address,
                port=port,
                last_build_at=website.last_build_at,
                build_duration_ms=website.build_duration_ms,
                output_lines=output_lines,
            )

    async def stop_website(self, website_id: str) -> StopResult:
        website_id = str(website_id)
        try:
            async with self._exclusive(website_id):
                stopped = await self.supervisor.stop(website_id)
        except NotFoundError:
            raise
        except AppException as e:
            logger.warning(f"[ORCHESTRATOR] Stop of website {website_id} failed: {e}")
            return StopResult(success=False, message=str(e))
        return StopResult(success=True, message="Website stopped" if stopped else "Website was not running")

    async def restart_website(self, website_id: str) -> LaunchResult:
        website_id = str(website_id)
        try:
            async with self._exclusive(website_id):
                status = await self.supervisor.restart(website_id)
        except NotFoundError:
            raise
        except AppException as e:
            logger.warning(f"[ORCHESTRATOR] Restart of website {website_id} failed: {e}")
            return LaunchResult(success=False, error=str(e))
        return LaunchResult(success=True, status=status, preview_address=self._preview_address(website_id))

    async def files_changed(self, website_id: str, file_names: List[str]) -> None:
        """Propagate file mutations to a live process; restart when the manifest changed."""
        if await self.supervisor.files_changed(website_id, file_names):
            logger.info(f"[ORCHESTRATOR] {DEPENDENCY_MANIFEST} changed for website {website_id}; restarting")
            result = await self.restart_website(website_id)
            if not result.success:
                logger.warning(f"[ORCHESTRATOR] Restart after manifest change failed: {result.error}")

    def resolve_preview(self, website_id: str) -> PreviewTarget:
        """Resolve where the preview is reachable and record the traffic."""
        website_id = str(website_id)
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            self.supervisor.touch(website_id)
            return self.resolver.resolve(website, port=self.allocator.lease_for(website_id))

    def read_preview_content(self, website_id: str, path: str) -> Tuple[str, str]:
        """
        Read a file for direct (static) preview serving.

        Returns:
            Tuple of (content, content_type)
        """
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            self.supervisor.touch(str(website_id))
            if not path or path.endswith("/"):
                names = [f.name for f in website.files if f.name.startswith(path)]
                path = find_index_file(names) or ""
            name = normalize_file_name(path) if path else ""
            for file in website.files:
                if file.name == name:
                    return file.content, file.content_type
        raise NotFoundError(f"File not found: {path}")

    async def reclaim_idle_websites(self, idle_seconds: float) -> List[str]:
        """Stop running websites without preview traffic. Websites mid-operation are skipped."""
        stopped: List[str] = []
        for website_id in self.supervisor.idle_candidates(idle_seconds):
            if website_id in self._in_flight:
                continue
            try:
                async with self._exclusive(website_id):
                    if await self.supervisor.stop(
                        website_id,
                        reason=f"Stopped after {int(idle_seconds)}s without preview traffic",
                        require_running=True,
                    ):
                        stopped.append(website_id)
            except AppException as e:
                logger.warning(f"[ORCHESTRATOR] Idle reclamation of website {website_id} failed: {e}")
        return stopped

    def recover(self) -> int:
        return self.supervisor.recover()

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()

    def stats(self) -> Dict[str, Any]:
        return self.supervisor.stats()

    # ------------------------------------------------------------------
    # Edits and history
    # ------------------------------------------------------------------

    async def ai_edit(
        self,
        website_id: str,
        file_name: str,
        prompt: str,
        current_content: Optional[str] = None,
        file_type: Optional[str] = None,
    ) -> AIEditOutcome:
        """Apply an AI edit through the ledger; rejected or failed edits leave the file untouched."""
        website_id = str(website_id)
        started = time.monotonic()
        try:
            entry = await self.ledger.propose_and_apply(
                website_id,
                normalize_file_name(file_name),
                prompt,
                current_content=current_content,
                file_type=file_type,
            )
        except NotFoundError:
            raise
        except AppException as e:
            return AIEditOutcome(
                success=False,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                error=str(e),
            )

        return AIEditOutcome(
            success=True,
            modified_content=entry.modification["after"],
            description=entry.description,
            confidence=entry.confidence,
            processing_time_ms=entry.processing_time_ms,
            change_id=str(entry.id),
        )

    def get_change_history(self, website_id: str, limit: Optional[int] = None) -> List[ChangeHistory]:
        with self._session_factory() as db:
            get_by_id(db, Website, website_id, f"Website not found: {website_id}")
        return self.ledger.history(website_id, limit=limit)

    async def revert_change(self, website_id: str, change_id: str) -> RevertResult:
        try:
            entry = await self.ledger.revert(website_id, change_id)
        except NotFoundError:
            raise
        except AppException as e:
            return RevertResult(success=False, error=str(e))
        return RevertResult(success=True, file_name=entry.file_name, content=entry.modification.get("before"))

    def export_website(self, website_id: str) -> ExportResult:
        """Snapshot the current file set. Touches no process state."""
        with self._session_factory() as db:
            website = get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            if not website.files:
                return ExportResult(success=False, website_name=website.name, error="Website has no files")
            return ExportResult(
                success=True,
                website_name=website.name,
                files=[
                    {
                        "name": f.name,
                        "content": f.content,
                        "content_type": f.content_type,
                        "size": f.size,
                    }
                    for f in website.files
                ],
            )


_ORCHESTRATOR: Optional[WebsiteOrchestrator] = None


def get_orchestrator() -> WebsiteOrchestrator:
    """Process-wide orchestrator (FastAPI dependency)."""
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = WebsiteOrchestrator()
    return _ORCHESTRATOR

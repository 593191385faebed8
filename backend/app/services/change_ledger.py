"""Change history ledger: applies AI edits to website files and reverts them."""
import asyncio
import difflib
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.constants import ChangeStatus
from app.database import SessionLocal
from app.models.change_history import ChangeHistory
from app.models.website import Website
from app.models.website_file import WebsiteFile
from app.services.ai_editor import AIEditor
from app.utils.db import get_by_id, parse_uuid
from app.utils.exceptions import AppException, EditRejected, NotFoundError, ResourceConflict, UpstreamTimeout
from app.utils.logger import logger

FilesChangedCallback = Callable[[str, List[str]], Awaitable[Any]]


def build_modification(file_name: str, before: str, after: str, changes: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Describe a file mutation for the history payload.

    Args:
        file_name: Path of the edited file
        before: Content before the edit
        after: Content after the edit
        changes: Short change notes reported by the AI provider

    Returns:
        Dict with before/after content, a unified diff and line counts
    """
    diff_lines = list(
        difflib.unified_diff(
            before.splitlines(),
            after.splitlines(),
            fromfile=f"a/{file_name}",
            tofile=f"b/{file_name}",
            lineterm="",
        )
    )
    return {
        "before": before,
        "after": after,
        "diff": "\n".join(diff_lines),
        "lines_added": sum(1 for line in diff_lines if line.startswith("+") and not line.startswith("+++")),
        "lines_removed": sum(1 for line in diff_lines if line.startswith("-") and not line.startswith("---")),
        "changes": list(changes or []),
    }


class ChangeLedger:
    """Records every AI edit against a file as an ordered, revertible entry.

    Mutations of one (website, file) pair are serialized with an asyncio lock
    held across the AI call, so concurrent edits on the same file apply in
    order and never interleave.
    """

    def __init__(
        self,
        editor: Optional[AIEditor] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        on_files_changed: Optional[FilesChangedCallback] = None,
        confidence_threshold: Optional[float] = None,
        edit_timeout_seconds: Optional[float] = None,
    ):
        self.editor = editor or AIEditor()
        self._session_factory = session_factory
        self._on_files_changed = on_files_changed
        self.confidence_threshold = (
            settings.ai_confidence_threshold if confidence_threshold is None else confidence_threshold
        )
        self.edit_timeout_seconds = (
            settings.ai_edit_timeout_seconds if edit_timeout_seconds is None else edit_timeout_seconds
        )
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, website_id: str, file_name: str) -> asyncio.Lock:
        key = (website_id, file_name)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def forget(self, website_id: str) -> None:
        """Drop the per-file locks of a deleted website. Locks held by an in-flight edit are kept."""
        website_id = str(website_id)
        for key in [k for k, lock in self._locks.items() if k[0] == website_id and not lock.locked()]:
            del self._locks[key]

    def _get_file(self, db: Session, website_id: str, file_name: str) -> WebsiteFile:
        file = (
            db.query(WebsiteFile)
            .filter(WebsiteFile.website_id == parse_uuid(website_id), WebsiteFile.name == file_name)
            .first()
        )
        if file is None:
            raise NotFoundError(f"File not found: {file_name}")
        return file

    async def _notify(self, website_id: str, file_name: str) -> None:
        if self._on_files_changed is None:
            return
        try:
            await self._on_files_changed(website_id, [file_name])
        except AppException as e:
            # The file mutation is committed; a failed sync surfaces through build status
            logger.warning(f"[LEDGER] Could not propagate change of {file_name} to website {website_id}: {e}")

    async def propose_and_apply(
        self,
        website_id: str,
        file_name: str,
        prompt: str,
        current_content: Optional[str] = None,
        file_type: Optional[str] = None,
    ) -> ChangeHistory:
        """
        Ask the AI provider for an edit and apply it.

        The entry is created pending, the file is overwritten and the entry is
        marked applied in one transaction. current_content, when given, is the
        editor's view of the file and is what the provider edits; the entry's
        "before" is always the stored content so a revert restores the file
        exactly.

        Raises:
            NotFoundError: Unknown website or file
            EditRejected: Low confidence, malformed reply, or no change
            UpstreamTimeout: Provider exceeded ai_edit_timeout_seconds
            ResourceConflict: The file was saved by someone else during the call
        """
        website_id = str(website_id)
        async with self._lock_for(website_id, file_name):
            started = time.monotonic()
            with self._session_factory() as db:
                get_by_id(db, Website, website_id, f"Website not found: {website_id}")
                file = self._get_file(db, website_id, file_name)
                before = file.content
                declared_type = file_type or file.content_type

            base = before if current_content is None else current_content
            try:
                result = await asyncio.wait_for(
                    self.editor.edit(prompt, base, file_name, declared_type),
                    timeout=self.edit_timeout_seconds,
                )
            except asyncio.TimeoutError:
                raise UpstreamTimeout(f"AI edit did not complete within {self.edit_timeout_seconds}s")

            if result.confidence is not None and result.confidence < self.confidence_threshold:
                logger.info(
                    f"[LEDGER] Rejected edit of {file_name}: confidence {result.confidence:.2f} "
                    f"below {self.confidence_threshold:.2f}"
                )
                raise EditRejected(
                    f"AI confidence {result.confidence:.2f} is below the threshold of {self.confidence_threshold:.2f}"
                )
            if result.modified_content == before:
                raise EditRejected("AI edit produced no changes")

            processing_time_ms = int((time.monotonic() - started) * 1000)
            with self._session_factory() as db:
                file = self._get_file(db, website_id, file_name)
                if file.content != before:
                    raise ResourceConflict(f"{file_name} was modified while the edit was being generated")

                last_sequence = (
                    db.query(func.max(ChangeHistory.sequence))
                    .filter(ChangeHistory.website_id == parse_uuid(website_id), ChangeHistory.file_name == file_name)
                    .scalar()
                )
                entry = ChangeHistory(
                    website_id=parse_uuid(website_id),
                    file_name=file_name,
                    sequence=(last_sequence or 0) + 1,
                    description=result.description,
                    prompt=prompt,
                    modification=build_modification(file_name, before, result.modified_content, result.changes),
                    status=ChangeStatus.PENDING,
                    confidence=result.confidence,
                    processing_time_ms=processing_time_ms,
                    created_at=datetime.now(timezone.utc),
                )
                db.add(entry)
                db.flush()

                file.set_content(result.modified_content)
                entry.status = ChangeStatus.APPLIED
                db.commit()
                db.refresh(entry)

            logger.info(f"[LEDGER] Applied change #{entry.sequence} to {file_name} of website {website_id}")
            await self._notify(website_id, file_name)
            return entry

    async def revert(self, website_id: str, change_id: str) -> ChangeHistory:
        """
        Restore a file to its content before the given change.

        Only the latest applied change of a file can be reverted, and only
        while the file still holds what that change produced. Reverting it
        makes the previous applied change the latest, so edits unwind in order.

        Raises:
            NotFoundError: Unknown change, change of another website, or already reverted
            ResourceConflict: A later applied change exists, or the file was edited since
        """
        website_id = str(website_id)
        change_uuid = parse_uuid(change_id, "Change")
        with self._session_factory() as db:
            get_by_id(db, Website, website_id, f"Website not found: {website_id}")
            entry = db.get(ChangeHistory, change_uuid)
            if entry is None or str(entry.website_id) != website_id:
                raise NotFoundError(f"Change not found: {change_id}")
            file_name = entry.file_name

        async with self._lock_for(website_id, file_name):
            with self._session_factory() as db:
                entry = db.get(ChangeHistory, change_uuid)
                if entry.status == ChangeStatus.REVERTED:
                    raise NotFoundError(f"Change {change_id} is already reverted")
                if entry.status != ChangeStatus.APPLIED:
                    raise ResourceConflict(f"Change {change_id} was never applied")

                latest = (
                    db.query(ChangeHistory)
                    .filter(
                        ChangeHistory.website_id == entry.website_id,
                        ChangeHistory.file_name == file_name,
                        ChangeHistory.status == ChangeStatus.APPLIED,
                    )
                    .order_by(ChangeHistory.sequence.desc())
                    .first()
                )
                if latest is None or latest.id != entry.id:
                    raise ResourceConflict(
                        f"Only the latest applied change of {file_name} can be reverted; revert change "
                        f"#{latest.sequence} first"
                    )

                file = self._get_file(db, website_id, file_name)
                modification = entry.modification or {}
                if file.content != modification.get("after"):
                    raise ResourceConflict(f"{file_name} was edited after change #{entry.sequence} was applied")

                file.set_content(modification.get("before", ""))
                entry.status = ChangeStatus.REVERTED
                entry.reverted_at = datetime.now(timezone.utc)
                db.commit()
                db.refresh(entry)

            logger.info(f"[LEDGER] Reverted change #{entry.sequence} of {file_name} in website {website_id}")
            await self._notify(website_id, file_name)
            return entry

    def history(self, website_id: str, limit: Optional[int] = None) -> List[ChangeHistory]:
        """Entries of a website in application order (oldest first)."""
        with self._session_factory() as db:
            query = (
                db.query(ChangeHistory)
                .filter(ChangeHistory.website_id == parse_uuid(website_id, "Website"))
                .order_by(ChangeHistory.created_at, ChangeHistory.sequence)
            )
            entries = query.all()
        if limit is not None:
            return entries[-limit:]
        return entries

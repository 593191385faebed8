"""Helpers for turning ORM values into JSON-friendly response fields."""
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID


def serialize_uuid(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value else None


def serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    """ISO 8601 string, or None for unset timestamps."""
    return value.isoformat() if value else None


def summarize_modification(modification: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Reduce a change's modification payload for list views.

    The full before/after contents stay out of history listings; the diff
    and line counts are enough to display what changed.
    """
    modification = modification or {}
    return {
        "diff": modification.get("diff", ""),
        "lines_added": modification.get("lines_added", 0),
        "lines_removed": modification.get("lines_removed", 0),
        "changes": modification.get("changes") or [],
    }

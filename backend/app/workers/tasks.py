"""Background maintenance tasks for supervised website previews."""
from typing import Any, Dict

from app.config import settings
from app.services.orchestrator import WebsiteOrchestrator, get_orchestrator
from app.utils.logger import logger


def _orchestrator(ctx: Dict[str, Any]) -> WebsiteOrchestrator:
    return ctx.get("orchestrator") or get_orchestrator()


async def reclaim_idle_websites(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Stop running websites that have had no preview traffic.

    Websites are idle once nothing resolved their preview for
    idle_timeout_minutes. Builds in progress are never touched.

    Returns:
        Dict with the ids of websites that were stopped
    """
    idle_seconds = ctx.get("idle_seconds", settings.idle_timeout_minutes * 60)
    try:
        stopped = await _orchestrator(ctx).reclaim_idle_websites(idle_seconds)
        if stopped:
            logger.info(f"[REAPER] Stopped {len(stopped)} idle website(s): {', '.join(stopped)}")
        return {"success": True, "websites_stopped": stopped}
    except Exception as e:
        logger.error(f"[REAPER] Idle reclamation failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}


async def recover_orphaned_builds(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """
    Mark process-backed websites left building/running by a previous run as failed.

    Returns:
        Dict with count of websites recovered
    """
    try:
        recovered = _orchestrator(ctx).recover()
        return {"success": True, "websites_recovered": recovered}
    except Exception as e:
        logger.error(f"[REAPER] Restart recovery failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}

import asyncio
import time

import pytest

from app.constants import BuildStatus, ProjectType
from app.services.orchestrator import WebsiteOrchestrator
from app.workers.config import IdleReaper, WorkerSettings
from app.workers.tasks import reclaim_idle_websites, recover_orphaned_builds

from tests._helpers import STATIC_FILES, VITE_FILES, FakeEditor, FakeSpawner, load_website, seed_website, wait_for_status


@pytest.fixture
def orchestrator(supervisor_factory):
    return WebsiteOrchestrator(supervisor=supervisor_factory(FakeSpawner()), editor=FakeEditor(None))


@pytest.mark.asyncio
async def test_reclaim_task_stops_idle_websites(orchestrator):
    website_id = seed_website(VITE_FILES)
    await orchestrator.start_website(website_id)
    await wait_for_status(website_id, BuildStatus.RUNNING)
    orchestrator.supervisor._processes[website_id].last_activity = time.monotonic() - 120

    result = await reclaim_idle_websites({"orchestrator": orchestrator, "idle_seconds": 60})

    assert result == {"success": True, "websites_stopped": [website_id]}
    website = load_website(website_id)
    assert website.build_status == BuildStatus.STOPPED
    assert "without preview traffic" in website.build_output[-1]


@pytest.mark.asyncio
async def test_reclaim_task_leaves_recent_traffic_alone(orchestrator):
    website_id = seed_website(VITE_FILES)
    await orchestrator.start_website(website_id)
    await wait_for_status(website_id, BuildStatus.RUNNING)
    orchestrator.resolve_preview(website_id)

    result = await reclaim_idle_websites({"orchestrator": orchestrator, "idle_seconds": 60})

    assert result["websites_stopped"] == []
    assert load_website(website_id).build_status == BuildStatus.RUNNING


@pytest.mark.asyncio
async def test_recover_task_fails_orphaned_process_builds_only(orchestrator):
    building_id = seed_website(VITE_FILES, name="building", build_status=BuildStatus.BUILDING)
    running_id = seed_website(VITE_FILES, name="running", project_type=ProjectType.VITE, build_status=BuildStatus.RUNNING)
    static_id = seed_website(STATIC_FILES, name="static", build_status=BuildStatus.RUNNING)

    result = await recover_orphaned_builds({"orchestrator": orchestrator})

    assert result == {"success": True, "websites_recovered": 2}
    assert load_website(building_id).build_status == BuildStatus.FAILED
    assert load_website(running_id).build_status == BuildStatus.FAILED
    assert load_website(static_id).build_status == BuildStatus.RUNNING


@pytest.mark.asyncio
async def test_reaper_runs_jobs_until_stopped():
    calls = []

    async def job(ctx):
        calls.append(ctx["marker"])
        return {"success": True}

    reaper = IdleReaper({"marker": "tick"}, interval_seconds=0.01, functions=[job])
    assert await reaper.run_once() == [{"success": True}]

    reaper.start()
    assert reaper.running
    await asyncio.sleep(0.05)
    await reaper.stop()

    assert not reaper.running
    assert len(calls) >= 2
    assert reaper.ctx["startup_complete"] is True


def test_worker_settings_register_idle_reclamation():
    assert reclaim_idle_websites in WorkerSettings.functions
    assert WorkerSettings.interval_seconds > 0

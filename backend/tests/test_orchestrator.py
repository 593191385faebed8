import asyncio
import io
import json
import time
import zipfile

import pytest

from app.constants import BuildStatus, WebsiteStatus
from app.database import SessionLocal
from app.models import ChangeHistory, Website
from app.services.ai_editor import AIEditResult
from app.services.orchestrator import WebsiteOrchestrator, build_zip_archive
from app.utils.exceptions import NotFoundError, ResourceConflict, ValidationError

from tests._helpers import (
    READY_LINE,
    STATIC_FILES,
    VITE_FILES,
    FakeEditor,
    FakeProcess,
    FakeSpawner,
    file_content,
    load_website,
    wait_for_status,
)


def _files(mapping):
    return [{"name": name, "content": content} for name, content in mapping.items()]


@pytest.fixture
def make_orchestrator(supervisor_factory):
    def _factory(spawner=None, editor=None, **overrides) -> WebsiteOrchestrator:
        supervisor = supervisor_factory(spawner or FakeSpawner(), **overrides)
        return WebsiteOrchestrator(supervisor=supervisor, editor=editor or FakeEditor(AIEditResult("", "")))

    return _factory


@pytest.mark.asyncio
async def test_static_upload_is_running_immediately_without_port(make_orchestrator):
    orchestrator = make_orchestrator()

    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))
    view = orchestrator.get_build_status(website_id)

    assert view.status == BuildStatus.RUNNING
    assert view.project_type == "static"
    assert view.port is None
    assert view.preview_address == f"http://testserver/api/websites/{website_id}/preview/content/index.html"


@pytest.mark.asyncio
async def test_react_vite_upload_builds_then_runs_with_port(make_orchestrator):
    orchestrator = make_orchestrator()

    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    assert orchestrator.get_build_status(website_id).status == BuildStatus.BUILDING

    await wait_for_status(website_id, BuildStatus.RUNNING)
    view = orchestrator.get_build_status(website_id)
    assert view.project_type == "react-vite"
    assert view.port is not None
    assert view.preview_address == f"http://127.0.0.1:{view.port}"
    assert view.build_duration_ms is not None
    assert any("ready in" in line for line in view.output_lines)


@pytest.mark.asyncio
async def test_stop_running_site_frees_its_port(make_orchestrator):
    orchestrator = make_orchestrator()
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)

    result = await orchestrator.stop_website(website_id)

    assert result.success
    assert orchestrator.get_build_status(website_id).status == BuildStatus.STOPPED
    assert orchestrator.allocator.lease_for(website_id) is None


@pytest.mark.asyncio
async def test_unknown_website_propagates_not_found(make_orchestrator):
    orchestrator = make_orchestrator()

    with pytest.raises(NotFoundError):
        await orchestrator.stop_website("00000000-0000-0000-0000-000000000000")
    with pytest.raises(NotFoundError):
        orchestrator.get_build_status("00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_only_one_runtime_operation_per_website_at_a_time(make_orchestrator):
    spawner = FakeSpawner(lambda: FakeProcess([READY_LINE], ignore_term=True))
    orchestrator = make_orchestrator(spawner, stop_grace_seconds=0.2, kill_wait_seconds=0.2)
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)

    first, second = await asyncio.gather(
        orchestrator.stop_website(website_id),
        orchestrator.restart_website(website_id),
    )

    assert first.success
    assert not second.success
    assert "in progress" in second.error
    assert load_website(website_id).build_status == BuildStatus.STOPPED


@pytest.mark.asyncio
async def test_failed_start_is_reported_not_raised(make_orchestrator):
    orchestrator = make_orchestrator(range_start=4100, range_end=4100)
    await orchestrator.create_website("first", _files(VITE_FILES))

    second_id = await orchestrator.create_website("second", _files(VITE_FILES))
    view = orchestrator.get_build_status(second_id)

    assert view.status == BuildStatus.FAILED
    assert view.preview_address is None
    result = await orchestrator.restart_website(second_id)
    assert not result.success
    assert "No preview ports available" in result.error


@pytest.mark.asyncio
async def test_ai_edit_applies_and_revert_restores(make_orchestrator):
    editor = FakeEditor(AIEditResult("<h1>Welcome</h1>", "Heading changed", confidence=0.8))
    orchestrator = make_orchestrator(editor=editor)
    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))

    outcome = await orchestrator.ai_edit(website_id, "index.html", "Welcome visitors")

    assert outcome.success
    assert outcome.modified_content == "<h1>Welcome</h1>"
    assert outcome.description == "Heading changed"
    assert outcome.confidence == 0.8
    assert outcome.processing_time_ms is not None
    history = orchestrator.get_change_history(website_id)
    assert [str(c.id) for c in history] == [outcome.change_id]

    reverted = await orchestrator.revert_change(website_id, outcome.change_id)
    assert reverted.success
    assert reverted.content == STATIC_FILES["index.html"]
    assert file_content(website_id, "index.html") == STATIC_FILES["index.html"]


@pytest.mark.asyncio
async def test_low_confidence_ai_edit_reports_failure_and_changes_nothing(make_orchestrator):
    editor = FakeEditor(AIEditResult("<h1>?</h1>", "Unsure", confidence=0.1))
    orchestrator = make_orchestrator(editor=editor)
    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))

    outcome = await orchestrator.ai_edit(website_id, "index.html", "Do something")

    assert not outcome.success
    assert "below the threshold" in outcome.error
    assert file_content(website_id, "index.html") == STATIC_FILES["index.html"]
    assert orchestrator.get_change_history(website_id) == []


@pytest.mark.asyncio
async def test_reverting_older_change_is_reported_as_conflict(make_orchestrator):
    editor = FakeEditor(lambda prompt, content: content + prompt)
    orchestrator = make_orchestrator(editor=editor)
    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))
    first = await orchestrator.ai_edit(website_id, "index.html", "<p>1</p>")
    await orchestrator.ai_edit(website_id, "index.html", "<p>2</p>")

    result = await orchestrator.revert_change(website_id, first.change_id)

    assert not result.success
    assert "latest applied change" in result.error
    with pytest.raises(NotFoundError):
        await orchestrator.revert_change(website_id, "00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_ai_edit_on_running_process_site_syncs_workspace(make_orchestrator, tmp_path):
    editor = FakeEditor(AIEditResult("console.log('edited')", "Edited", confidence=0.9))
    spawner = FakeSpawner()
    orchestrator = make_orchestrator(spawner, editor=editor)
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)

    outcome = await orchestrator.ai_edit(website_id, "src/main.jsx", "Log something else")

    assert outcome.success
    assert (tmp_path / website_id / "src" / "main.jsx").read_text() == "console.log('edited')"
    assert len(spawner.processes) == 1


@pytest.mark.asyncio
async def test_saving_package_json_restarts_running_site(make_orchestrator):
    spawner = FakeSpawner()
    orchestrator = make_orchestrator(spawner)
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)
    manifest = json.loads(VITE_FILES["package.json"])
    manifest["dependencies"]["lodash"] = "^4.17.21"

    changed = await orchestrator.save_files(website_id, [{"name": "package.json", "content": json.dumps(manifest)}])

    assert changed == ["package.json"]
    await wait_for_status(website_id, BuildStatus.RUNNING)
    assert len(spawner.processes) == 2
    assert spawner.processes[0].returncode is not None


@pytest.mark.asyncio
async def test_saving_package_json_while_building_rebuilds_before_running(make_orchestrator, tmp_path):
    slow = FakeProcess()
    spawner = FakeSpawner(lambda: slow)
    orchestrator = make_orchestrator(spawner)
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    while not spawner.processes:
        await asyncio.sleep(0.01)
    manifest = json.loads(VITE_FILES["package.json"])
    manifest["dependencies"]["lodash"] = "^4.17.21"

    await orchestrator.save_files(website_id, [{"name": "package.json", "content": json.dumps(manifest)}])
    assert load_website(website_id).build_status == BuildStatus.BUILDING
    slow.emit(READY_LINE)

    await wait_for_status(website_id, BuildStatus.RUNNING)
    assert len(spawner.processes) == 2
    assert json.loads((tmp_path / website_id / "package.json").read_text()) == manifest


@pytest.mark.asyncio
async def test_save_files_adds_new_files_and_skips_unchanged(make_orchestrator):
    orchestrator = make_orchestrator()
    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))

    changed = await orchestrator.save_files(
        website_id,
        [
            {"name": "index.html", "content": STATIC_FILES["index.html"]},
            {"name": "about.html", "content": "<p>About</p>"},
        ],
    )

    assert changed == ["about.html"]
    assert file_content(website_id, "about.html") == "<p>About</p>"
    assert orchestrator.get_change_history(website_id) == []


@pytest.mark.asyncio
async def test_export_snapshots_current_files(make_orchestrator):
    orchestrator = make_orchestrator()
    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))

    export = orchestrator.export_website(website_id)

    assert export.success
    assert export.website_name == "landing"
    assert [f["name"] for f in export.files] == list(STATIC_FILES)
    archive = zipfile.ZipFile(io.BytesIO(build_zip_archive(export.files)))
    assert archive.read("index.html").decode() == STATIC_FILES["index.html"]


@pytest.mark.asyncio
async def test_create_validates_uploads(make_orchestrator):
    orchestrator = make_orchestrator()
    await orchestrator.create_website("landing", _files(STATIC_FILES))

    with pytest.raises(ResourceConflict):
        await orchestrator.create_website("landing", _files(STATIC_FILES))
    with pytest.raises(ValidationError):
        await orchestrator.create_website("css-only", _files({"style.css": "h1 {}"}))
    with pytest.raises(ValidationError):
        await orchestrator.create_website("empty", [])
    with pytest.raises(ValidationError):
        await orchestrator.create_website("sneaky", _files({"../index.html": "<p>x</p>"}))


@pytest.mark.asyncio
async def test_draft_website_is_not_started(make_orchestrator):
    orchestrator = make_orchestrator()

    website_id = await orchestrator.create_website("draft", _files(STATIC_FILES), status=WebsiteStatus.DRAFT)

    assert load_website(website_id).build_status == BuildStatus.PENDING


@pytest.mark.asyncio
async def test_archiving_stops_the_website(make_orchestrator):
    orchestrator = make_orchestrator()
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)

    await orchestrator.update_website(website_id, status=WebsiteStatus.ARCHIVED)

    website = load_website(website_id)
    assert website.status == WebsiteStatus.ARCHIVED
    assert website.build_status == BuildStatus.STOPPED


@pytest.mark.asyncio
async def test_idle_sites_are_reclaimed(make_orchestrator):
    orchestrator = make_orchestrator()
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)

    assert await orchestrator.reclaim_idle_websites(3600) == []
    orchestrator.supervisor._processes[website_id].last_activity = time.monotonic() - 7200
    assert await orchestrator.reclaim_idle_websites(3600) == [website_id]
    assert load_website(website_id).build_status == BuildStatus.STOPPED


@pytest.mark.asyncio
async def test_delete_removes_website_and_workspace_but_keeps_history(make_orchestrator, tmp_path):
    editor = FakeEditor(AIEditResult("console.log(1)", "Edited", confidence=0.9))
    orchestrator = make_orchestrator(editor=editor)
    website_id = await orchestrator.create_website("app", _files(VITE_FILES))
    await wait_for_status(website_id, BuildStatus.RUNNING)
    await orchestrator.ai_edit(website_id, "src/main.jsx", "log one")
    assert (website_id, "src/main.jsx") in orchestrator.ledger._locks

    await orchestrator.delete_website(website_id)

    with SessionLocal() as db:
        assert db.query(Website).count() == 0
        assert db.query(ChangeHistory).count() == 1
    assert orchestrator.allocator.lease_for(website_id) is None
    assert not (tmp_path / website_id).exists()
    assert not any(key[0] == website_id for key in orchestrator.ledger._locks)
    with pytest.raises(NotFoundError):
        orchestrator.get_build_status(website_id)


@pytest.mark.asyncio
async def test_preview_resolution_and_static_content(make_orchestrator):
    orchestrator = make_orchestrator()
    website_id = await orchestrator.create_website("landing", _files(STATIC_FILES))

    target = orchestrator.resolve_preview(website_id)
    content, content_type = orchestrator.read_preview_content(website_id, "")

    assert target.kind == "static"
    assert content == STATIC_FILES["index.html"]
    assert content_type == "text/html"
    with pytest.raises(NotFoundError):
        orchestrator.read_preview_content(website_id, "missing.js")

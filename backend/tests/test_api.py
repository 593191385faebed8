import io
import zipfile

import pytest
from fastapi.testclient import TestClient

import app.services.orchestrator as orchestrator_module
from app.main import app
from app.services.orchestrator import WebsiteOrchestrator

from tests._helpers import STATIC_FILES, FakeEditor, FakeSpawner, make_supervisor

MISSING_ID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def client(tmp_path, monkeypatch):
    editor = FakeEditor(lambda prompt, content: content.replace("Hello", prompt))
    orchestrator = WebsiteOrchestrator(supervisor=make_supervisor(tmp_path, FakeSpawner()), editor=editor)
    monkeypatch.setattr(orchestrator_module, "_ORCHESTRATOR", orchestrator)
    with TestClient(app) as test_client:
        yield test_client


def _create(client, name="landing page", files=None, **extra):
    payload = {
        "name": name,
        "files": [{"name": n, "content": c} for n, c in (files or STATIC_FILES).items()],
        **extra,
    }
    return client.post("/api/websites", json=payload)


def test_create_static_website_is_running(client):
    response = _create(client, description="Marketing page")

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "landing page"
    assert body["project_type"] == "static"
    assert body["build_status"] == "running"
    assert body["port"] is None
    assert body["file_count"] == 2
    assert body["preview_url"].endswith(f"/api/websites/{body['id']}/preview/content/index.html")


def test_create_rejects_invalid_uploads(client):
    assert _create(client, files={"style.css": "h1 {}"}).status_code == 400
    assert _create(client, files={"../index.html": "<p>x</p>"}).status_code == 400
    assert client.post("/api/websites", json={"files": []}).status_code == 422

    assert _create(client).status_code == 200
    duplicate = _create(client)
    assert duplicate.status_code == 409
    assert "already exists" in duplicate.json()["detail"]


def test_list_detail_and_update(client):
    website_id = _create(client).json()["id"]
    _create(client, name="draft", status="draft")

    assert len(client.get("/api/websites").json()) == 2
    drafts = client.get("/api/websites", params={"status": "draft"}).json()
    assert [w["name"] for w in drafts] == ["draft"]
    assert drafts[0]["build_status"] == "pending"
    assert client.get("/api/websites", params={"status": "bogus"}).status_code == 400

    detail = client.get(f"/api/websites/{website_id}").json()
    assert [f["name"] for f in detail["files"]] == list(STATIC_FILES)
    assert detail["recent_changes"] == []

    updated = client.patch(f"/api/websites/{website_id}", json={"description": "New copy"}).json()
    assert updated["description"] == "New copy"
    archived = client.patch(f"/api/websites/{website_id}", json={"status": "archived"}).json()
    assert archived["status"] == "archived"
    assert archived["build_status"] == "stopped"


def test_unknown_website_is_404(client):
    for path in ("", "/build-status", "/preview", "/files", "/changes", "/export"):
        response = client.get(f"/api/websites/{MISSING_ID}{path}")
        assert response.status_code == 404, path
    assert client.post(f"/api/websites/{MISSING_ID}/stop").status_code == 404
    assert client.get("/api/websites/not-a-uuid").status_code == 404


def test_build_status_preview_and_content(client):
    website_id = _create(client).json()["id"]

    status = client.get(f"/api/websites/{website_id}/build-status").json()
    assert status["status"] == "running"
    assert status["project_type"] == "static"
    assert status["output_lines"]

    preview = client.get(f"/api/websites/{website_id}/preview").json()
    assert preview["kind"] == "static"
    assert preview["address"] == status["preview_url"]

    content = client.get(f"/api/websites/{website_id}/preview/content/index.html")
    assert content.status_code == 200
    assert content.headers["content-type"].startswith("text/html")
    assert content.text == STATIC_FILES["index.html"]
    assert client.get(f"/api/websites/{website_id}/preview/content/missing.js").status_code == 404


def test_stop_start_and_restart(client):
    website_id = _create(client).json()["id"]

    stopped = client.post(f"/api/websites/{website_id}/stop").json()
    assert stopped == {"success": True, "message": "Website stopped"}
    assert client.post(f"/api/websites/{website_id}/stop").json()["message"] == "Website was not running"
    assert client.get(f"/api/websites/{website_id}/preview").json()["kind"] == "unavailable"

    started = client.post(f"/api/websites/{website_id}/start").json()
    assert started["success"]
    assert started["status"] == "running"

    conflict = client.post(f"/api/websites/{website_id}/start").json()
    assert not conflict["success"]
    assert "already running" in conflict["error"]

    restarted = client.post(f"/api/websites/{website_id}/restart").json()
    assert restarted["success"]
    assert restarted["preview_url"].endswith("/index.html")


def test_save_files(client):
    website_id = _create(client).json()["id"]

    response = client.put(
        f"/api/websites/{website_id}/files",
        json={"files": [{"name": "index.html", "content": "<h1>Saved</h1>"}]},
    )

    assert response.json() == {"success": True, "changed_files": ["index.html"]}
    files = client.get(f"/api/websites/{website_id}/files").json()
    assert files[0]["content"] == "<h1>Saved</h1>"
    assert client.get(f"/api/websites/{website_id}/changes").json() == []


def test_ai_edit_history_and_revert(client):
    website_id = _create(client).json()["id"]

    edit = client.post(
        f"/api/websites/{website_id}/ai-edit",
        json={"file_name": "index.html", "prompt": "Welcome"},
    ).json()
    assert edit["success"]
    assert "Welcome" in edit["modified_content"]
    assert edit["change_id"]

    history = client.get(f"/api/websites/{website_id}/changes").json()
    assert len(history) == 1
    assert history[0]["status"] == "applied"
    assert history[0]["lines_added"] == 1
    assert history[0]["diff"]
    detail = client.get(f"/api/websites/{website_id}").json()
    assert [c["id"] for c in detail["recent_changes"]] == [edit["change_id"]]

    revert = client.post(f"/api/websites/{website_id}/changes/{edit['change_id']}/revert").json()
    assert revert == {
        "success": True,
        "file_name": "index.html",
        "content": STATIC_FILES["index.html"],
        "error": None,
    }
    assert client.get(f"/api/websites/{website_id}/changes").json()[0]["status"] == "reverted"
    again = client.post(f"/api/websites/{website_id}/changes/{edit['change_id']}/revert")
    assert again.status_code == 404


def test_ai_edit_rejection_is_reported_in_body(client):
    website_id = _create(client).json()["id"]

    response = client.post(
        f"/api/websites/{website_id}/ai-edit",
        json={"file_name": "style.css", "prompt": "Make it blue"},
    )

    assert response.status_code == 200
    body = response.json()
    assert not body["success"]
    assert "no changes" in body["error"]
    assert client.post(
        f"/api/websites/{website_id}/ai-edit",
        json={"file_name": "missing.html", "prompt": "x"},
    ).status_code == 404


def test_export_and_download(client):
    website_id = _create(client).json()["id"]

    export = client.get(f"/api/websites/{website_id}/export").json()
    assert export["success"]
    assert export["website_name"] == "landing page"
    assert [f["name"] for f in export["files"]] == list(STATIC_FILES)
    assert export["download_url"] == f"/api/websites/{website_id}/export/download"

    download = client.get(export["download_url"])
    assert download.status_code == 200
    assert download.headers["content-type"] == "application/zip"
    assert 'filename="landing-page.zip"' in download.headers["content-disposition"]
    archive = zipfile.ZipFile(io.BytesIO(download.content))
    assert sorted(archive.namelist()) == sorted(STATIC_FILES)


def test_delete_website(client):
    website_id = _create(client).json()["id"]

    response = client.delete(f"/api/websites/{website_id}")

    assert response.json() == {"message": "Website deleted successfully"}
    assert client.get(f"/api/websites/{website_id}").status_code == 404
    assert client.delete(f"/api/websites/{website_id}").status_code == 404


def test_health_reports_supervisor_stats(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["supervisor"]["capacity"] == 5
    assert body["supervisor"]["active"] == 0

import json

import httpx
import pytest

from app.services.ai_editor import AIEditor
from app.utils.exceptions import EditRejected, UpstreamTimeout


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _editor(handler, api_key: str = "test-key") -> AIEditor:
    return AIEditor(
        api_key=api_key,
        model="test/model",
        base_url="https://ai.test/v1/chat/completions",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_edit_parses_json_reply_and_sends_file_context():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["payload"] = json.loads(request.content)
        reply = {
            "modified_content": "<h1>Welcome</h1>",
            "description": "Renamed heading",
            "confidence": 0.87,
            "changes": ["heading text"],
        }
        return httpx.Response(200, json=_completion(json.dumps(reply)))

    result = await _editor(handler).edit("Say welcome", "<h1>Hello</h1>", "index.html", "text/html")

    assert result.modified_content == "<h1>Welcome</h1>"
    assert result.description == "Renamed heading"
    assert result.confidence == pytest.approx(0.87)
    assert result.changes == ["heading text"]
    assert seen["auth"] == "Bearer test-key"
    assert seen["payload"]["model"] == "test/model"
    user_message = seen["payload"]["messages"][-1]["content"]
    assert "index.html" in user_message
    assert "<h1>Hello</h1>" in user_message


@pytest.mark.asyncio
async def test_edit_accepts_fenced_json_and_clamps_confidence():
    def handler(request: httpx.Request) -> httpx.Response:
        body = "```json\n" + json.dumps({"modified_content": "body {}", "confidence": 3}) + "\n```"
        return httpx.Response(200, json=_completion(body))

    result = await _editor(handler).edit("Reset css", "h1 {}", "style.css", "text/css")

    assert result.modified_content == "body {}"
    assert result.confidence == 1.0
    assert result.description == "AI edit"


@pytest.mark.asyncio
async def test_http_error_is_rejected_with_provider_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"error": {"message": "Insufficient credits"}})

    with pytest.raises(EditRejected, match="Insufficient credits"):
        await _editor(handler).edit("x", "y", "a.js", "application/javascript")


@pytest.mark.asyncio
async def test_timeout_is_upstream_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamTimeout):
        await _editor(handler).edit("x", "y", "a.js", "application/javascript")


@pytest.mark.asyncio
async def test_reply_without_content_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion("I cannot help with that."))

    with pytest.raises(EditRejected):
        await _editor(handler).edit("x", "y", "a.js", "application/javascript")


@pytest.mark.asyncio
async def test_missing_api_key_rejects_without_calling_provider():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=_completion("{}"))

    with pytest.raises(EditRejected, match="not configured"):
        await _editor(handler, api_key="").edit("x", "y", "a.js", "application/javascript")
    assert calls == []

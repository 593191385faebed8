"""AI file editing service using an OpenRouter-compatible chat completions API."""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.utils.exceptions import EditRejected, UpstreamTimeout
from app.utils.logger import logger

_CODE_FENCE = re.compile(r"^```[\w-]*\s*\n(.*?)\n```\s*$", re.DOTALL)

SYSTEM_PROMPT = (
    "You edit a single file of a web project. Apply the user's instruction to the file and "
    "reply with one JSON object and nothing else, using the keys: "
    "modified_content (the complete new file content), description (one sentence), "
    "confidence (a number between 0 and 1), changes (a list of short strings)."
)


@dataclass
class AIEditResult:
    """Parsed answer from the AI provider."""
    modified_content: str
    description: str
    confidence: Optional[float] = None
    changes: List[str] = field(default_factory=list)


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.match(text.strip())
    return match.group(1) if match else text


class AIEditor:
    """Client for the AI edit provider: (prompt, content, file type) -> edited content."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ai_api_key
        self.model = model or settings.ai_model
        self.base_url = base_url or settings.ai_base_url
        self.timeout_seconds = timeout_seconds or settings.ai_edit_timeout_seconds
        self._transport = transport

    def _build_messages(self, prompt: str, content: str, file_name: str, file_type: str) -> List[Dict[str, str]]:
        user_message = (
            f"File: {file_name}\n"
            f"Type: {file_type}\n"
            f"Instruction: {prompt}\n\n"
            f"Current content:\n{content}"
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_message},
        ]

    async def _run_completion(self, messages: List[Dict[str, str]]) -> str:
        """
        Send a chat completion request.

        Returns:
            The assistant message text

        Raises:
            UpstreamTimeout: If the provider does not answer in time
            EditRejected: On HTTP errors or an unexpected response shape
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "Website Preview Editor",
        }
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
        }

        logger.info(f"[AI_EDIT] Sending request to {self.base_url} with model {self.model}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(self.base_url, json=payload, headers=headers)
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"AI provider did not respond within {self.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            error_message = e.response.text
            try:
                error_json = e.response.json()
                if isinstance(error_json, dict) and isinstance(error_json.get("error"), dict):
                    error_message = error_json["error"].get("message", error_message)
            except json.JSONDecodeError:
                pass
            logger.error(f"[AI_EDIT] HTTP error: {e.response.status_code} - {error_message}")
            raise EditRejected(f"AI request failed ({e.response.status_code}): {error_message}") from e
        except httpx.HTTPError as e:
            logger.error(f"[AI_EDIT] Request failed: {e}", exc_info=True)
            raise EditRejected(f"AI request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise EditRejected("AI provider returned a non-JSON response") from e

        try:
            return result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise EditRejected(f"Unexpected response format: {str(result)[:200]}")

    def _parse_result(self, text: str) -> AIEditResult:
        """Extract the edit from the model's reply."""
        cleaned = _strip_code_fence(text or "")
        data: Any = None
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            json_match = re.search(r"\{.*\}", cleaned, re.DOTALL)
            if json_match:
                try:
                    data = json.loads(json_match.group())
                except json.JSONDecodeError:
                    data = None

        if not isinstance(data, dict):
            logger.warning(f"[AI_EDIT] Could not parse JSON from response: {cleaned[:200]}")
            raise EditRejected("AI response was not a JSON object")

        modified = data.get("modified_content")
        if not isinstance(modified, str):
            raise EditRejected("AI response is missing modified_content")

        confidence = data.get("confidence")
        if confidence is not None:
            try:
                confidence = max(0.0, min(1.0, float(confidence)))
            except (TypeError, ValueError):
                raise EditRejected(f"AI response has an invalid confidence: {confidence!r}")

        changes = data.get("changes") or []
        if not isinstance(changes, list):
            changes = [str(changes)]

        return AIEditResult(
            modified_content=_strip_code_fence(modified),
            description=str(data.get("description") or "AI edit"),
            confidence=confidence,
            changes=[str(change) for change in changes],
        )

    async def edit(self, prompt: str, content: str, file_name: str, file_type: str) -> AIEditResult:
        """
        Ask the provider to apply a natural-language edit to one file.

        Args:
            prompt: The user's instruction
            content: Current file content
            file_name: File path within the website
            file_type: Declared content type of the file

        Returns:
            AIEditResult with the complete new content
        """
        if not self.api_key:
            raise EditRejected("AI provider is not configured. Set AI_API_KEY environment variable.")
        if not prompt or not prompt.strip():
            raise EditRejected("Edit prompt is empty")

        text = await self._run_completion(self._build_messages(prompt, content, file_name, file_type))
        result = self._parse_result(text)
        logger.info(
            f"[AI_EDIT] Edit generated for {file_name} (confidence: {result.confidence}, "
            f"{len(result.changes)} change(s))"
        )
        return result

"""
Gemini API client for budget-buddy.

Wraps the ``generateContent`` REST endpoint for text prompts with an optional
inline image, plus helpers for pulling JSON out of the model's reply.

API Documentation: https://ai.google.dev/api/generate-content
"""

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

# Leading ```json / ``` and trailing ``` markers the model likes to add
_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


class ModelError(Exception):
    """The model call failed or returned nothing usable."""


class ModelResponseError(ModelError):
    """The model reply could not be decoded as JSON."""


@dataclass(frozen=True)
class InlineImage:
    """Image bytes sent alongside a prompt."""

    data: bytes
    mime_type: str = "image/jpeg"

    def to_part(self) -> dict[str, Any]:
        return {
            "inline_data": {
                "mime_type": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }


class AIModel(Protocol):
    """Anything that turns a prompt (and maybe an image) into text."""

    async def generate(self, prompt: str, image: InlineImage | None = None) -> str: ...


def strip_code_fences(text: str) -> str:
    """Remove Markdown code-fence markers wrapped around a reply."""
    stripped = text.strip()
    stripped = _FENCE_OPEN.sub("", stripped, count=1)
    stripped = _FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def parse_json_response(text: str) -> Any:
    """Decode a model reply as JSON after stripping code fences."""
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ModelResponseError(f"Model response is not valid JSON: {e}") from e


class GeminiClient:
    """
    Client for the Gemini ``generateContent`` endpoint.

    One request per call; no retries.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-flash-latest",
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: float | None = None,
    ):
        """
        Initialize the Gemini client.

        Args:
            api_key: Google AI Studio API key
            model: Model name, without the ``models/`` prefix
            api_base: REST base URL
            timeout_seconds: Request timeout, None to wait indefinitely
        """
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout_seconds

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def build_payload(self, prompt: str, image: InlineImage | None = None) -> dict[str, Any]:
        """Build the request body for a prompt and optional image."""
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if image is not None:
            parts.append(image.to_part())
        return {"contents": [{"role": "user", "parts": parts}]}

    async def generate(self, prompt: str, image: InlineImage | None = None) -> str:
        """
        Generate text for a prompt.

        Returns:
            The concatenated text parts of the first candidate

        Raises:
            ModelError: missing key, HTTP failure or empty reply
        """
        if not self.api_key:
            raise ModelError("Gemini API key is not configured")

        headers = {"x-goog-api-key": self.api_key}
        payload = self.build_payload(prompt, image)

        logger.debug(f"Calling {self.model} (image={'yes' if image else 'no'})")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                logger.warning(f"HTTP error from Gemini: {e}")
                raise ModelError(f"Gemini request failed: {e.response.status_code}") from e

        return self._extract_text(data)

    def _extract_text(self, data: dict[str, Any]) -> str:
        """Pull the text out of a generateContent response."""
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            raise ModelError(f"Gemini returned no candidates{f' ({reason})' if reason else ''}")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text:
            raise ModelError("Gemini returned an empty response")
        return text

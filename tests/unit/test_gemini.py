"""Tests for the Gemini client and JSON reply helpers."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from budget_buddy.gemini import (
    GeminiClient,
    InlineImage,
    ModelError,
    ModelResponseError,
    parse_json_response,
    strip_code_fences,
)


class TestStripCodeFences:
    """Test removing Markdown fences from model output."""

    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_fence_without_newlines(self):
        assert strip_code_fences('```{"a": 1}```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_surrounding_whitespace(self):
        assert strip_code_fences('\n  ```json\n[1, 2]\n```  \n') == "[1, 2]"


class TestParseJsonResponse:
    """Test decoding model replies."""

    def test_fenced_json(self):
        assert parse_json_response('```json\n{"total": 7.0}\n```') == {"total": 7.0}

    def test_invalid_json(self):
        with pytest.raises(ModelResponseError):
            parse_json_response("I could not read that receipt.")


class TestGeminiClient:
    """Test GeminiClient."""

    @pytest.fixture
    def mock_http(self):
        """Patch httpx.AsyncClient and return the inner mock client."""
        with patch("httpx.AsyncClient") as MockClient:
            mock_client = AsyncMock()
            mock_client.__aenter__.return_value = mock_client
            mock_client.__aexit__.return_value = None
            MockClient.return_value = mock_client
            yield mock_client

    def make_response(self, json_data, status_code=200):
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = json_data
        response.raise_for_status = MagicMock()
        if status_code >= 400:
            from httpx import HTTPStatusError

            response.raise_for_status.side_effect = HTTPStatusError(
                "Error", request=MagicMock(), response=response
            )
        return response

    def test_endpoint(self):
        client = GeminiClient("key", model="gemini-flash-latest", api_base="https://g.test/v1beta/")
        assert client.endpoint == "https://g.test/v1beta/models/gemini-flash-latest:generateContent"

    def test_build_payload_text_only(self):
        client = GeminiClient("key")
        payload = client.build_payload("hello")
        assert payload == {"contents": [{"role": "user", "parts": [{"text": "hello"}]}]}

    def test_build_payload_with_image(self):
        """Images are sent base64-encoded after the prompt."""
        client = GeminiClient("key")
        payload = client.build_payload("read this", InlineImage(b"abc", "image/png"))
        parts = payload["contents"][0]["parts"]
        assert parts[0] == {"text": "read this"}
        assert parts[1]["inline_data"]["mime_type"] == "image/png"
        assert base64.b64decode(parts[1]["inline_data"]["data"]) == b"abc"

    @pytest.mark.asyncio
    async def test_generate_joins_parts(self, mock_http):
        """Text parts of the first candidate are concatenated."""
        mock_http.post.return_value = self.make_response(
            {"candidates": [{"content": {"parts": [{"text": '{"a":'}, {"text": " 1}"}]}}]}
        )
        client = GeminiClient("secret")

        text = await client.generate("prompt")

        assert text == '{"a": 1}'
        kwargs = mock_http.post.call_args.kwargs
        assert kwargs["headers"] == {"x-goog-api-key": "secret"}

    @pytest.mark.asyncio
    async def test_generate_without_key(self, mock_http):
        """A missing key fails before any request."""
        with pytest.raises(ModelError):
            await GeminiClient(None).generate("prompt")
        mock_http.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_generate_http_error(self, mock_http):
        """HTTP errors become ModelError."""
        mock_http.post.return_value = self.make_response({}, status_code=429)
        with pytest.raises(ModelError, match="429"):
            await GeminiClient("secret").generate("prompt")

    @pytest.mark.asyncio
    async def test_generate_blocked(self, mock_http):
        """A reply without candidates is an error."""
        mock_http.post.return_value = self.make_response(
            {"promptFeedback": {"blockReason": "SAFETY"}}
        )
        with pytest.raises(ModelError, match="SAFETY"):
            await GeminiClient("secret").generate("prompt")

    @pytest.mark.asyncio
    async def test_generate_empty_text(self, mock_http):
        """A candidate without text is an error."""
        mock_http.post.return_value = self.make_response({"candidates": [{"content": {}}]})
        with pytest.raises(ModelError):
            await GeminiClient("secret").generate("prompt")

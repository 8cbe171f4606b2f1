"""Tests for the Ollama completion client."""

import asyncio
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from localassist.errors import CompletionUnavailableError
from localassist.llm import OllamaClient


def client_for(handler, **kwargs):
    return OllamaClient(transport=httpx.MockTransport(handler), **kwargs)


class TestComplete:
    """Test completion requests."""

    def test_success(self):
        """The generate endpoint receives model, prompt and options."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "  Paris.  "})

        client = client_for(handler, model="test-model")
        result = asyncio.run(client.complete("Capital of France?", max_tokens=20, temperature=0.0, stop=["\n"]))

        assert result.text == "Paris."
        assert result.model == "test-model"
        assert seen["url"] == "http://localhost:11434/api/generate"
        assert seen["body"]["prompt"] == "Capital of France?"
        assert seen["body"]["stream"] is False
        assert seen["body"]["options"] == {"num_predict": 20, "temperature": 0.0, "stop": ["\n"]}

    def test_http_error(self):
        client = client_for(lambda request: httpx.Response(500, json={"error": "model not loaded"}))

        with pytest.raises(CompletionUnavailableError, match="500"):
            asyncio.run(client.complete("hi"))

    def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused")

        with pytest.raises(CompletionUnavailableError, match="unavailable"):
            asyncio.run(client_for(handler).complete("hi"))

    def test_request_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out")

        with pytest.raises(CompletionUnavailableError, match="timed out"):
            asyncio.run(client_for(handler).complete("hi"))

    def test_deadline(self):
        """A slow response is cut off at the deadline."""
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"response": "late"})

        with pytest.raises(CompletionUnavailableError, match="50ms"):
            asyncio.run(client_for(handler).complete("hi", timeout_ms=50))

    def test_missing_response_field(self):
        client = client_for(lambda request: httpx.Response(200, json={"done": True}))
        assert asyncio.run(client.complete("hi")).text == ""


class TestHealth:
    """Test the health check."""

    @patch("httpx.Client")
    def test_check_health_success(self, mock_client_class):
        """Health check returns True when Ollama responds."""
        mock_client = MagicMock()
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_client.__enter__ = MagicMock(return_value=mock_client)
        mock_client.__exit__ = MagicMock(return_value=False)
        mock_client.get.return_value = mock_response
        mock_client_class.return_value = mock_client

        assert OllamaClient(base_url="http://ollama:11434/").check_health() is True
        mock_client.get.assert_called_once_with("http://ollama:11434/api/tags")

    @patch("httpx.Client")
    def test_check_health_failure(self, mock_client_class):
        """Health check returns False when Ollama is unavailable."""
        mock_client_class.return_value.__enter__.side_effect = httpx.ConnectError("Connection refused")

        assert OllamaClient().check_health() is False


class TestOllamaIntegration:
    """Integration tests requiring Ollama (marked for conditional running)."""

    @pytest.mark.integration
    def test_real_completion(self):
        client = OllamaClient()
        if not client.check_health():
            pytest.skip("Ollama not available")

        result = asyncio.run(client.complete("Reply with the single word: pong", max_tokens=10))
        assert result.text

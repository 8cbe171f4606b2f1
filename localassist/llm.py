"""Text-completion client for a local Ollama service."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

from localassist.errors import CompletionUnavailableError

logger = logging.getLogger(__name__)

# Ollama API endpoint
OLLAMA_BASE_URL = "http://localhost:11434"

# Default model
DEFAULT_MODEL = "phi3:mini"

# Timeouts
DEFAULT_TIMEOUT_MS = 30_000
HEALTH_TIMEOUT = 5.0  # seconds

DEFAULT_MAX_TOKENS = 256
DEFAULT_TEMPERATURE = 0.2


@dataclass
class CompletionResult:
    """Text produced by one completion call."""

    text: str
    model: str
    duration_ms: int = 0


class OllamaClient:
    """Async client for Ollama's generate endpoint."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = DEFAULT_MODEL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Ollama server URL
            model: Model used for completions
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._transport = transport

    @property
    def generate_endpoint(self) -> str:
        return f"{self.base_url}/api/generate"

    async def complete(
        self,
        prompt: str,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Generate a completion.

        Args:
            prompt: Prompt text
            timeout_ms: Hard deadline for the whole call
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            stop: Optional stop sequences

        Returns:
            CompletionResult with the generated text

        Raises:
            CompletionUnavailableError: If the service is unreachable, errors or times out
        """
        options: dict[str, object] = {"num_predict": max_tokens, "temperature": temperature}
        if stop:
            options["stop"] = stop
        payload = {"model": self.model, "prompt": prompt, "stream": False, "options": options}

        timeout = timeout_ms / 1000.0
        started = time.monotonic()
        try:
            text = await asyncio.wait_for(self._generate(payload, timeout), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Ollama completion timed out after {timeout_ms}ms")
            raise CompletionUnavailableError(f"Completion timed out after {timeout_ms}ms") from e

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"Completion from {self.model} in {duration_ms}ms ({len(text)} chars)")
        return CompletionResult(text=text, model=self.model, duration_ms=duration_ms)

    async def _generate(self, payload: dict[str, object], timeout: float) -> str:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(self.generate_endpoint, json=payload)
                response.raise_for_status()
                return str(response.json().get("response", "")).strip()

        except httpx.ConnectError as e:
            logger.error(f"Failed to connect to Ollama: {e}")
            raise CompletionUnavailableError("Ollama service unavailable") from e

        except httpx.TimeoutException as e:
            logger.warning(f"Ollama request timed out: {e}")
            raise CompletionUnavailableError("Ollama request timed out") from e

        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise CompletionUnavailableError(f"Ollama returned error: {e.response.status_code}") from e

    def check_health(self) -> bool:
        """Check if the Ollama service is available."""
        try:
            with httpx.Client(timeout=HEALTH_TIMEOUT) as client:
                response = client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

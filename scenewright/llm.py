"""Text-generation client used by rolling memory refresh.

`RollingMemoryCache` takes any async callable of the form

    async def __call__(self, stage: str, system: str, prompt: str) -> str: ...

where `system` is the fixed merge instruction, `prompt` the per-entity
merge request, and `stage` one of "scene_memory", "chapter_memory",
"workshop_memory" (used here only in debug logs).

`HttpLLM` talks to a KoboldCpp or an OpenAI-compatible chat server,
chosen by `provider_format`. `EchoLLM` hands the prompt back and needs no
server.

Every transport, status and body-decoding failure of `HttpLLM` surfaces
as `LLMError`; the memory cache wraps it in `MemoryRefreshError`.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

from scenewright.config import LLMConnection

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, system: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "koboldcpp"  — POST /api/v1/generate       {"prompt": system + prompt}
                     Response: {"results": [{"text": "..."}]}
      "openai"     — POST /v1/chat/completions   {"model": ..., "messages": [...]}
                     Response: {"choices": [{"message": {"content": "..."}}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:1234".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model identifier, used only by the openai format.
        timeout:         HTTP timeout in seconds. Defaults to 120.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_connection(cls, connection: LLMConnection) -> HttpLLM:
        return cls(
            provider_url=connection.provider_url,
            api_key=connection.api_key,
            provider_format=connection.provider_format,
            model=connection.model,
            timeout=connection.timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, system: str, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/chat/completions"
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            body: dict = {"messages": messages}
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp has no system slot
        url = f"{self._base_url}/api/v1/generate"
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        return url, {"prompt": full_prompt}

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            choices = data.get("choices")
            first = choices[0] if isinstance(choices, list) and choices else None
            if not isinstance(first, dict) or not isinstance(first.get("message"), dict):
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            content = first["message"].get("content")
            if not isinstance(content, str):
                raise LLMError("No completion content in OpenAI-compatible response")
            return content

        # koboldcpp
        results = data.get("results")
        first = results[0] if isinstance(results, list) and results else None
        if not isinstance(first, dict) or "text" not in first:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return first["text"]

    async def __call__(self, stage: str, system: str, prompt: str) -> str:
        url, body = self._build_request(system, prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {type(e).__name__}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON response") from e
        if not isinstance(data, dict):
            raise LLMError("Unexpected response format: expected a JSON object")

        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM — returns the prompt unchanged; useful for wiring smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the user prompt as-is. No network calls.

    Lets you verify that memory refresh (prompt building, normalisation,
    record commit) works end-to-end without a running model.
    """

    async def __call__(self, stage: str, system: str, prompt: str) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""

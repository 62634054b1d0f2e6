"""LLM client — HTTP connection to a chat-completion backend.

The orchestrator injects an LLM callable matching the protocol:

    async def __call__(self, system_prompt: str, user_message: str) -> str: ...

`system_prompt` carries the persona, output schema and serialised story
state; `user_message` is the short instruction derived from the reader's
choice.

Two implementations are provided:

    HttpLLM    — real HTTP client, supports OpenAI-compatible chat backends
                 (Groq, OpenAI, llama.cpp server) and KoboldCpp. Selected by
                 provider_format.
    CannedLLM  — returns one fixed, valid segment. Useful for demos and for
                 smoke-testing the turn loop without a running model.

Production code constructs an HttpLLM from Settings (see config.make_llm).
Tests use StubLLM (defined in conftest.py) instead.
"""

from __future__ import annotations

import json
import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, system_prompt: str, user_message: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM — connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["openai", "koboldcpp"]


class HttpLLM:
    """Async HTTP client for chat-completion backends.

    Supported formats:
      "openai"     — POST /v1/chat/completions
                     {"model": ..., "messages": [{"role": "system", ...},
                                                 {"role": "user", ...}]}
                     Response: {"choices": [{"message": {"content": "..."}}]}
      "koboldcpp"  — POST /api/v1/generate  {"prompt": system + user}
                     Response: {"results": [{"text": "..."}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "https://api.groq.com/openai".
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

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, system_prompt: str, user_message: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "koboldcpp":
            url = f"{self._base_url}/api/v1/generate"
            return url, {"prompt": f"{system_prompt}\n\n{user_message}"}

        # openai (default)
        url = f"{self._base_url}/v1/chat/completions"
        body: dict = {
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        }
        if self._model:
            body["model"] = self._model
        return url, body

    def _parse_response(self, data: dict) -> str:
        """Extract the completion text from the response body."""
        if self._format == "koboldcpp":
            results = data.get("results")
            if not results or "text" not in results[0]:
                raise LLMError("Unexpected response format from KoboldCpp backend")
            return results[0]["text"]

        choices = data.get("choices")
        if not choices or "message" not in choices[0]:
            raise LLMError("Unexpected response format from OpenAI-compatible backend")
        # some providers send a null content for empty completions
        return choices[0]["message"].get("content") or ""

    async def __call__(self, system_prompt: str, user_message: str) -> str:
        url, body = self._build_request(system_prompt, user_message)
        logger.debug(
            "llm call url=%s system_len=%d user_len=%d",
            url, len(system_prompt), len(user_message),
        )

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

        text = self._parse_response(resp.json())
        logger.debug("llm response len=%d", len(text))
        return text


# ---------------------------------------------------------------------------
# CannedLLM — fixed segment, no network; useful for demos and smoke tests
# ---------------------------------------------------------------------------

CANNED_SEGMENT: dict = {
    "narrative_text": (
        "O ar estagnado na câmara escura trazia o cheiro a mofo e metal oxidado. "
        "Um som distante de gotejamento ecoava na penumbra, quebrada apenas por um "
        "feixe ténue de luz que se esgueirava por uma fenda no teto. Uma brisa fria, "
        "vinda de uma abertura que antes não notaras, roçou-te a nuca."
    ),
    "choices": [
        "Explorar a fenda de luz",
        "Procurar a origem do gotejamento",
        "Tocar na parede húmida",
        "Investigar a brisa",
    ],
    "mood": "mysterious",
    "image_prompt": "Dark damp cave, single light beam, ancient metal, cold breeze",
    "audio_prompt": "Water dripping, distant echoes, faint cave breeze",
}


class CannedLLM:
    """Returns the same segment JSON on every call. No network calls.

    Lets you drive the orchestrator and the HTTP API end-to-end without a
    model. Pass *response* to override the canned text (it is returned
    verbatim, so it can also be used to feed malformed output).
    """

    def __init__(self, response: str | None = None) -> None:
        self._response = response if response is not None else json.dumps(
            CANNED_SEGMENT, ensure_ascii=False
        )

    async def __call__(self, system_prompt: str, user_message: str) -> str:
        logger.debug("CannedLLM system_len=%d user=%r", len(system_prompt), user_message)
        return self._response


# ---------------------------------------------------------------------------
# LLMError — raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""

"""Async Ollama chat client shared by the moderation and interpretation stages.

``OllamaChatClient`` is the only place in the room pipeline that talks to
the language model. It wraps the Ollama ``/api/chat`` endpoint with one
``httpx.AsyncClient`` so calls suspend the event loop instead of blocking
the room actor.

The client returns ``None`` for every network-level failure (timeout,
connection error, non-2xx status, undecodable body). Interpreting what
``None`` means is left to the caller: moderation treats it as UNSAFE,
interpretation falls back to an empty delta.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

_DEFAULT_TEMPERATURE = 0.7


class ChatOracle(Protocol):
    """Text-in/text-out model call used by the pipeline stages."""

    async def complete(
        self, system_prompt: str, user_message: str, *, max_tokens: int
    ) -> str | None: ...


class OllamaChatClient:
    """Non-streaming client for an Ollama-compatible ``/api/chat`` endpoint.

    Attributes:
        _api_endpoint:  Full ``/api/chat`` URL.
        _model:         Ollama model tag (e.g. ``"llama3.1:8b"``).
        _timeout:       HTTP request timeout in seconds.
        _temperature:   Sampling temperature.
        _client:        Shared ``httpx.AsyncClient``; owned (and closed by
                        :meth:`aclose`) unless one was injected.
    """

    def __init__(
        self,
        *,
        api_endpoint: str,
        model: str,
        timeout_seconds: float,
        temperature: float = _DEFAULT_TEMPERATURE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_endpoint = api_endpoint
        self._model = model
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def complete(
        self, system_prompt: str, user_message: str, *, max_tokens: int
    ) -> str | None:
        """Call Ollama and return the stripped ``message.content``.

        Args:
            system_prompt: Instruction for the model.
            user_message:  Untrusted user text, sent as the ``user`` turn.
            max_tokens:    Output budget forwarded as ``options.num_predict``.

        Returns:
            Raw model output on success, ``None`` on failure or empty output.
        """
        payload = self._build_payload(system_prompt, user_message, max_tokens)

        try:
            response = await self._client.post(
                self._api_endpoint,
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning(
                "OllamaChatClient: request timed out after %.1fs (endpoint=%s)",
                self._timeout,
                self._api_endpoint,
            )
            return None
        except httpx.ConnectError:
            logger.warning("OllamaChatClient: cannot connect to Ollama at %s", self._api_endpoint)
            return None
        except httpx.HTTPError as exc:
            logger.error("OllamaChatClient: request failed: %s", exc)
            return None
        except ValueError:
            logger.error("OllamaChatClient: response body is not JSON")
            return None

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            return None
        return content.strip() or None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _build_payload(self, system_prompt: str, user_message: str, max_tokens: int) -> dict:
        return {
            "model": self._model,
            "stream": False,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "options": {
                "temperature": self._temperature,
                "num_predict": max_tokens,
            },
        }

"""Cloudflare Turnstile bot verification.

Runs before a submission is admitted to the room. With no secret configured
the verifier is disabled and every call passes.
"""

from __future__ import annotations

import logging

import httpx

from vibe_server.core.errors import VerificationError

logger = logging.getLogger(__name__)

REQUIRED_MESSAGE = "Bot verification required."
FAILED_MESSAGE = "Bot verification failed."


class TurnstileVerifier:
    def __init__(
        self,
        *,
        secret: str,
        verify_url: str,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.secret = secret
        self.verify_url = verify_url
        self.timeout_seconds = timeout_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    async def verify(self, token: str | None, remote_ip: str) -> None:
        """Raise :class:`VerificationError` unless ``token`` checks out."""
        if not self.enabled:
            return
        if not token:
            raise VerificationError(REQUIRED_MESSAGE)

        try:
            response = await self._client.post(
                self.verify_url,
                json={"secret": self.secret, "response": token, "remoteip": remote_ip},
                timeout=self.timeout_seconds,
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Turnstile verification request failed: %s", exc)
            raise VerificationError(FAILED_MESSAGE) from exc

        if not (isinstance(data, dict) and data.get("success") is True):
            logger.info("Turnstile rejected token from %s", remote_ip)
            raise VerificationError(FAILED_MESSAGE)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

"""HTTP client for the reCAPTCHA ``siteverify`` endpoint."""
from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from .errors import CaptchaNetworkError, CaptchaTimeoutError
from .logging import get_logger
from .models import VerificationResponse
from .policy import GOOGLE_VERIFY_URL

logger = get_logger("captcha_guard.client")


class VerificationClient:
    """Send tokens to the verification endpoint, one attempt per call.

    Every transport problem is mapped onto :class:`CaptchaNetworkError` or
    :class:`CaptchaTimeoutError`.  Retrying is left to the caller.
    """

    def __init__(
        self,
        *,
        verify_url: str = GOOGLE_VERIFY_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._verify_url = verify_url
        self._transport = transport
        self._clients: dict[bool, httpx.AsyncClient] = {}

    @property
    def verify_url(self) -> str:
        return self._verify_url

    def _client(self, verify_ssl: bool) -> httpx.AsyncClient:
        client = self._clients.get(verify_ssl)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(verify=verify_ssl, transport=self._transport)
            self._clients[verify_ssl] = client
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    async def send(
        self,
        token: str,
        secret: str,
        remote_ip: str | None = None,
        *,
        timeout_seconds: float = 30.0,
        verify_ssl: bool = True,
    ) -> VerificationResponse:
        payload: dict[str, Any] = {"secret": secret, "response": token}
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            response = await self._client(verify_ssl).post(
                self._verify_url,
                data=payload,
                timeout=timeout_seconds,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("captcha verification timed out", timeout=timeout_seconds)
            raise CaptchaTimeoutError(timeout_seconds) from exc
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.warning("captcha verification endpoint error", status_code=status_code)
            raise CaptchaNetworkError(
                f"verification endpoint answered HTTP {status_code}", status_code=status_code
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("captcha verification request failed", error=str(exc))
            raise CaptchaNetworkError(str(exc) or exc.__class__.__name__) from exc

        try:
            body = response.json()
        except ValueError as exc:
            logger.warning("captcha verification response was not JSON")
            raise CaptchaNetworkError("Invalid response format from reCAPTCHA API") from exc

        if not isinstance(body, dict):
            raise CaptchaNetworkError("Invalid response format from reCAPTCHA API")

        try:
            return VerificationResponse.model_validate(body)
        except ValidationError as exc:
            logger.warning("captcha verification response failed validation", errors=exc.error_count())
            raise CaptchaNetworkError(
                "Invalid response format from reCAPTCHA API", response_data=body
            ) from exc


__all__ = ["VerificationClient"]

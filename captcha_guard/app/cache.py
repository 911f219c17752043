"""Memoisation of verification outcomes by token fingerprint."""
from __future__ import annotations

import asyncio
import hashlib
from typing import Any, Awaitable

from .logging import get_logger
from .models import CaptchaVersion
from .policy import CachePolicy
from .storage import CacheBackend

logger = get_logger("captcha_guard.cache")

_ACCEPTED = b"1"
_REJECTED = b"0"


def fingerprint(token: str, version: CaptchaVersion) -> str:
    """Return ``"<version>:<sha256(token)>"``."""

    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{version.value}:{digest}"


class ResultCache:
    """Best-effort outcome cache.

    Backend failures and slow backends degrade to a miss (``get``) or a no-op
    (``put``); they never abort a verification.
    """

    def __init__(self, backend: CacheBackend | None, policy: CachePolicy) -> None:
        self._backend = backend
        self._policy = policy

    @property
    def enabled(self) -> bool:
        return self._policy.enabled and self._backend is not None

    @property
    def policy(self) -> CachePolicy:
        return self._policy

    def key_for(self, token_hash: str) -> str:
        return f"{self._policy.prefix}:{token_hash}"

    async def _bounded(self, operation: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(operation, timeout=self._policy.operation_timeout_seconds)

    async def get(self, token_hash: str) -> bool | None:
        if not self.enabled or self._backend is None:
            return None
        try:
            raw = await self._bounded(self._backend.get(self.key_for(token_hash)))
        except asyncio.TimeoutError:
            logger.warning("captcha cache read timed out", key=token_hash)
            return None
        except Exception as exc:
            logger.warning("captcha cache read error", key=token_hash, error=str(exc))
            return None
        if raw == _ACCEPTED:
            return True
        if raw == _REJECTED:
            return False
        return None

    async def put(self, token_hash: str, outcome: bool, ttl_seconds: int | None = None) -> None:
        if not self.enabled or self._backend is None:
            return
        if ttl_seconds is None:
            ttl_seconds = self._policy.ttl_seconds if outcome else self._policy.failure_ttl_seconds
        value = _ACCEPTED if outcome else _REJECTED
        try:
            await self._bounded(self._backend.set(self.key_for(token_hash), value, ttl_seconds))
        except asyncio.TimeoutError:
            logger.warning("captcha cache write timed out", key=token_hash)
        except Exception as exc:
            logger.warning("captcha cache write error", key=token_hash, error=str(exc))

    async def remember(self, token_hash: str, outcome: bool) -> None:
        """Store ``outcome`` honouring the success/failure TTLs and failure policy."""

        if not outcome and not self._policy.cache_failures:
            return
        await self.put(token_hash, outcome)

    async def close(self) -> None:
        if self._backend is not None:
            await self._backend.close()


__all__ = ["ResultCache", "fingerprint"]

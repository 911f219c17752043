"""Rate limiting of captcha verification attempts per client."""
from __future__ import annotations

from dataclasses import dataclass

from .logging import get_logger
from .storage import CacheBackend

logger = get_logger("captcha_guard.ratelimit")


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    """Represents the rate limiting status for a verification attempt."""

    attempts: int
    blocked: bool


class CaptchaRateLimiter:
    """Track verification attempts per client IP within a fixed window."""

    def __init__(
        self,
        *,
        cache: CacheBackend,
        max_attempts: int,
        window_seconds: int,
        namespace: str = "captcha:rl",
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")

        self._cache = cache
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._namespace = namespace

    def _make_key(self, ip_address: str) -> str:
        return f"{self._namespace}:{ip_address}"

    @staticmethod
    def _normalise_ip(ip_address: str | None) -> str:
        if not ip_address:
            return "unknown"
        cleaned = ip_address.strip()
        return cleaned or "unknown"

    async def _get_count(self, key: str) -> int:
        raw = await self._cache.get(key)
        if raw is None:
            return 0
        try:
            return int(raw.decode("utf-8"))
        except (ValueError, AttributeError):
            return 0

    async def hit(self, ip_address: str | None) -> RateLimitStatus:
        """Record an attempt for ``ip_address`` and report whether it is blocked.

        Attempts beyond the limit are not counted so a blocked client's window
        is not extended.  A failing backend lets the attempt through.
        """

        key = self._make_key(self._normalise_ip(ip_address))
        try:
            attempts = await self._get_count(key)
            if attempts >= self._max_attempts:
                logger.info("captcha rate limit exceeded", ip=ip_address, attempts=attempts)
                return RateLimitStatus(attempts=attempts, blocked=True)
            attempts += 1
            await self._cache.set(key, str(attempts).encode("utf-8"), self._window_seconds)
        except Exception as exc:
            logger.warning("captcha rate limit backend error", ip=ip_address, error=str(exc))
            return RateLimitStatus(attempts=0, blocked=False)
        return RateLimitStatus(attempts=attempts, blocked=False)

    async def reset(self, ip_address: str | None) -> None:
        await self._cache.delete(self._make_key(self._normalise_ip(ip_address)))

    async def close(self) -> None:
        await self._cache.close()


__all__ = ["CaptchaRateLimiter", "RateLimitStatus"]

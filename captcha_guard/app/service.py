"""Verification orchestration: bypass rules, cache, client and validator."""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Protocol, runtime_checkable

from .cache import ResultCache, fingerprint
from .client import VerificationClient
from .config import Settings
from .errors import CaptchaConfigurationError, CaptchaNetworkError, ErrorKind
from .logging import get_logger, log_at
from .messages import user_message
from .models import CaptchaVersion, Rejection, VerificationOutcome, VerificationRequest
from .policy import Policy, parse_version, validate_threshold
from .storage import CacheBackend, build_cache
from .validator import ResponseValidator

logger = get_logger("captcha_guard.service")


@runtime_checkable
class CaptchaService(Protocol):
    """Operations exposed to validation rules, guards and views."""

    @property
    def enabled(self) -> bool: ...

    async def verify(
        self,
        token: str,
        action: str = "default",
        threshold: float | None = None,
        version: CaptchaVersion | str | None = None,
        remote_ip: str | None = None,
    ) -> bool: ...

    async def verify_detailed(self, request: VerificationRequest) -> VerificationOutcome: ...

    async def get_score(self, token: str, action: str = "default") -> float | None: ...

    def is_enabled(self, action: str = "default") -> bool: ...

    def site_key(self, version: CaptchaVersion | str | None = None) -> str: ...

    def build_request(
        self,
        token: str,
        action: str = "default",
        threshold: float | None = None,
        version: CaptchaVersion | str | None = None,
        remote_ip: str | None = None,
    ) -> VerificationRequest: ...

    async def aclose(self) -> None: ...


class DisabledCaptchaService:
    """Used when captcha is switched off: every verification is accepted."""

    @property
    def enabled(self) -> bool:
        return False

    def build_request(
        self,
        token: str,
        action: str = "default",
        threshold: float | None = None,
        version: CaptchaVersion | str | None = None,
        remote_ip: str | None = None,
    ) -> VerificationRequest:
        return VerificationRequest(
            token=token or "",
            action=action or "default",
            threshold_override=threshold,
            remote_ip=remote_ip,
            version=parse_version(version) if version else CaptchaVersion.V3,
        )

    async def verify(
        self,
        token: str,
        action: str = "default",
        threshold: float | None = None,
        version: CaptchaVersion | str | None = None,
        remote_ip: str | None = None,
    ) -> bool:
        return True

    async def verify_detailed(self, request: VerificationRequest) -> VerificationOutcome:
        return VerificationOutcome.accept(skipped=True)

    async def get_score(self, token: str, action: str = "default") -> float | None:
        return None

    def is_enabled(self, action: str = "default") -> bool:
        return False

    def site_key(self, version: CaptchaVersion | str | None = None) -> str:
        return ""

    async def aclose(self) -> None:
        return None


class RecaptchaService:
    """Google reCAPTCHA v2/v3 verification.

    ``verify_detailed`` runs, in order: the environment bypass, input checks
    (empty token, threshold override range), the outcome cache, the network
    call and the :class:`ResponseValidator`.  Rejections come back as
    :class:`VerificationOutcome`; configuration and transport problems raise
    :class:`CaptchaConfigurationError` / :class:`CaptchaNetworkError`.
    """

    def __init__(
        self,
        policy: Policy,
        *,
        client: VerificationClient | None = None,
        cache: ResultCache | None = None,
        validator: ResponseValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._policy = policy
        self._validator = validator or ResponseValidator(policy)
        self._client = client or VerificationClient(verify_url=policy.verify_url)
        self._cache = cache or ResultCache(None, policy.cache)
        self._clock = clock
        self._validate_configuration()

    def _validate_configuration(self) -> None:
        if self._policy.bypass.active or self._policy.using_test_keys:
            return
        if self._policy.verify_hostname and self._policy.expected_hostname is None:
            logger.warning(
                "captcha hostname verification has no expected hostname; "
                "responses carrying a non-local hostname will be rejected"
            )
        version = self._policy.default_version
        self._policy.site_key(version)
        self._policy.secret_key(version)

    @property
    def policy(self) -> Policy:
        return self._policy

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def enabled(self) -> bool:
        return not self._policy.bypass.active

    def is_enabled(self, action: str = "default") -> bool:
        if self._policy.bypass.active:
            return False
        return self._policy.form_enabled(action)

    def site_key(self, version: CaptchaVersion | str | None = None) -> str:
        resolved = parse_version(version) if version else self._policy.default_version
        return self._policy.site_key(resolved)

    def build_request(
        self,
        token: str,
        action: str = "default",
        threshold: float | None = None,
        version: CaptchaVersion | str | None = None,
        remote_ip: str | None = None,
    ) -> VerificationRequest:
        return VerificationRequest(
            token=token or "",
            action=action or "default",
            threshold_override=threshold,
            remote_ip=remote_ip,
            version=parse_version(version) if version else self._policy.default_version,
        )

    async def verify(
        self,
        token: str,
        action: str = "default",
        threshold: float | None = None,
        version: CaptchaVersion | str | None = None,
        remote_ip: str | None = None,
    ) -> bool:
        request = self.build_request(token, action, threshold, version, remote_ip)
        outcome = await self.verify_detailed(request)
        return outcome.accepted

    async def verify_detailed(self, request: VerificationRequest) -> VerificationOutcome:
        policy = self._policy
        if policy.bypass.active:
            logger.debug("captcha verification bypassed", reason=policy.bypass.reason)
            return VerificationOutcome.accept(skipped=True)

        if not request.token or not request.token.strip():
            rejection = Rejection(kind=ErrorKind.REQUIRED, message=user_message(ErrorKind.REQUIRED))
            self._log_rejection(request, rejection, None)
            return VerificationOutcome.reject(rejection)

        if request.threshold_override is not None:
            validate_threshold(request.threshold_override)

        token_hash = fingerprint(request.token, request.version)
        cached = await self._cache.get(token_hash)
        if cached is not None:
            logger.debug("captcha cache hit", version=request.version.value, accepted=cached)
            if cached:
                return VerificationOutcome.accept(cached=True)
            rejection = Rejection(kind=ErrorKind.INVALID, message="Token was already rejected")
            return VerificationOutcome(accepted=False, reason=rejection, cached=True)

        secret = policy.secret_key(request.version)
        try:
            response = await self._client.send(
                request.token,
                secret,
                request.remote_ip,
                timeout_seconds=policy.timeout_seconds,
                verify_ssl=policy.verify_ssl,
            )
        except CaptchaNetworkError as exc:
            if exc.action is None:
                exc.action = request.action
            logger.warning(
                "captcha verification error",
                version=request.version.value,
                status_code=exc.status_code,
                **exc.context(),
            )
            raise

        now = self._clock() if self._clock else None
        outcome = self._validator.validate(
            response,
            version=request.version,
            action=request.action,
            threshold_override=request.threshold_override,
            now=now,
        )
        if not outcome.accepted and outcome.reason is not None:
            self._log_rejection(request, outcome.reason, outcome.score)

        await self._cache.remember(token_hash, outcome.accepted)
        return outcome

    async def get_score(self, token: str, action: str = "default") -> float | None:
        """Return the raw v3 score for ``token`` or ``None`` when unavailable."""

        if self._policy.bypass.active or not token:
            return None
        try:
            response = await self._client.send(
                token,
                self._policy.secret_key(CaptchaVersion.V3),
                timeout_seconds=self._policy.timeout_seconds,
                verify_ssl=self._policy.verify_ssl,
            )
        except (CaptchaNetworkError, CaptchaConfigurationError) as exc:
            logger.warning("failed to get captcha score", action=action, error=exc.message)
            return None
        return response.score

    async def aclose(self) -> None:
        await self._client.aclose()
        await self._cache.close()

    def _log_rejection(
        self, request: VerificationRequest, rejection: Rejection, score: float | None
    ) -> None:
        if not self._policy.log_errors:
            return
        fields: dict[str, object] = {
            "action": request.action,
            "version": request.version.value,
            "reason": rejection.kind.value,
            "detail": rejection.message,
        }
        if self._policy.log_score and score is not None:
            fields["score"] = score
        log_at(logger, self._policy.log_level, "captcha verification rejected", **fields)


def create_captcha_service(
    settings: Settings,
    *,
    client: VerificationClient | None = None,
    cache_backend: CacheBackend | None = None,
) -> CaptchaService:
    """Build the service selected by ``settings.version``."""

    if settings.service != "recaptcha":
        raise CaptchaConfigurationError.unsupported_service(settings.service)
    if settings.disabled:
        return DisabledCaptchaService()
    policy = settings.to_policy()
    backend = cache_backend
    if backend is None and policy.cache.enabled:
        backend = build_cache(settings.cache.redis_url)
    return RecaptchaService(
        policy,
        client=client or VerificationClient(verify_url=policy.verify_url),
        cache=ResultCache(backend, policy.cache),
    )


__all__ = [
    "CaptchaService",
    "DisabledCaptchaService",
    "RecaptchaService",
    "create_captcha_service",
]

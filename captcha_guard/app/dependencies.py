"""FastAPI dependency helpers and the ``require_captcha`` guard."""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status

from .config import Settings, get_settings
from .errors import CaptchaNetworkError, CaptchaTimeoutError, ErrorKind
from .logging import bind_contextvars, get_logger, log_at
from .messages import user_message
from .models import CaptchaVersion, VerificationOutcome
from .ratelimit import CaptchaRateLimiter
from .service import CaptchaService, create_captcha_service
from .storage import build_cache

logger = get_logger("captcha_guard.dependencies")

TOKEN_HEADER = "X-Captcha-Token"
FALLBACK_TOKEN_FIELDS: tuple[str, ...] = (
    "captcha_token",
    "captcha",
    "recaptcha_token",
    "recaptcha",
    "g-recaptcha-response",
)


def get_captcha_settings(request: Request) -> Settings:
    """Return the settings attached to the application, loading them lazily."""

    settings = getattr(request.app.state, "captcha_settings", None)
    if settings is None:
        settings = get_settings()
        request.app.state.captcha_settings = settings
    return settings


def get_captcha_service(request: Request) -> CaptchaService:
    """Return the configured captcha service."""

    service = getattr(request.app.state, "captcha_service", None)
    if service is None:
        service = create_captcha_service(get_captcha_settings(request))
        request.app.state.captcha_service = service
    return service


def get_rate_limiter(request: Request) -> CaptchaRateLimiter | None:
    """Return the verification rate limiter, or ``None`` when disabled."""

    settings = get_captcha_settings(request)
    if not settings.rate_limiting.enabled:
        return None
    limiter = getattr(request.app.state, "captcha_rate_limiter", None)
    if limiter is None:
        limiter = CaptchaRateLimiter(
            cache=build_cache(settings.cache.redis_url),
            max_attempts=settings.rate_limiting.max_attempts,
            window_seconds=settings.rate_limiting.decay_seconds,
            namespace=f"{settings.cache.prefix}:rl",
        )
        request.app.state.captcha_rate_limiter = limiter
    return limiter


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


async def _request_fields(request: Request) -> dict[str, Any]:
    fields: dict[str, Any] = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        body = await request.body()
        if body:
            try:
                payload = json.loads(body)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                fields.update(payload)
    elif "form" in content_type:
        form = await request.form()
        fields.update({key: value for key, value in form.items() if isinstance(value, str)})
    return fields


async def extract_token(request: Request, field: str = "captcha_token") -> str | None:
    """Find the captcha token in the body, query string or header."""

    fields = await _request_fields(request)
    for name in (field, *FALLBACK_TOKEN_FIELDS):
        value = fields.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    header = request.headers.get(TOKEN_HEADER)
    if header and header.strip():
        return header.strip()
    return None


def _failure(status_code: int, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={
            "message": "Captcha verification failed.",
            "errors": {"captcha": [message]},
            "captcha_error": True,
        },
    )


def require_captcha(
    action: str = "default",
    threshold: float | None = None,
    *,
    field: str | None = None,
    version: CaptchaVersion | str | None = None,
) -> Callable[..., Awaitable[VerificationOutcome | None]]:
    """Build a dependency that rejects requests without a valid captcha token.

    The dependency returns the :class:`VerificationOutcome` (``None`` when the
    check was skipped) so endpoints can inspect the score.
    """

    async def dependency(
        request: Request,
        service: CaptchaService = Depends(get_captcha_service),
        settings: Settings = Depends(get_captcha_settings),
        limiter: CaptchaRateLimiter | None = Depends(get_rate_limiter),
    ) -> VerificationOutcome | None:
        if not service.is_enabled(action):
            return None
        if request.method == "GET" and not settings.middleware.verify_get_requests:
            return None

        overrides = settings.errors.messages
        ip_address = client_ip(request)
        bind_contextvars(captcha_action=action, client_ip=ip_address)
        if limiter is not None:
            status_check = await limiter.hit(ip_address)
            if status_check.blocked:
                raise _failure(
                    status.HTTP_429_TOO_MANY_REQUESTS,
                    user_message(ErrorKind.RATE_LIMITED, overrides),
                )

        token = await extract_token(request, field or settings.middleware.token_field)
        verification = service.build_request(
            token or "", action, threshold, version, remote_ip=ip_address
        )
        try:
            outcome = await service.verify_detailed(verification)
        except CaptchaNetworkError as exc:
            logger.error("captcha guard network error", **exc.context())
            if settings.middleware.fail_open_on_network_error:
                return None
            key = "timeout" if isinstance(exc, CaptchaTimeoutError) else "network_error"
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={
                    "message": "Captcha verification error.",
                    "errors": {"captcha": [user_message(key, overrides)]},
                    "captcha_error": True,
                },
            ) from exc

        if not outcome.accepted:
            kind = outcome.reason.kind if outcome.reason else ErrorKind.INVALID
            if settings.errors.log_errors:
                log_at(
                    logger,
                    settings.errors.log_level,
                    "captcha guard rejected request",
                    reason=kind.value,
                    score=outcome.score if settings.errors.log_score else None,
                )
            raise _failure(status.HTTP_422_UNPROCESSABLE_ENTITY, user_message(kind, overrides))
        return outcome

    return dependency


__all__ = [
    "FALLBACK_TOKEN_FIELDS",
    "TOKEN_HEADER",
    "client_ip",
    "extract_token",
    "get_captcha_service",
    "get_captcha_settings",
    "get_rate_limiter",
    "require_captcha",
]

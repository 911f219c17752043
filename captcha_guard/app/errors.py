"""Exception taxonomy and Google error-code table.

Only configuration and transport problems are raised as exceptions.  A token
that Google (or the local policy) refuses is reported through
:class:`~captcha_guard.app.models.VerificationOutcome` instead.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping


class ErrorKind(str, Enum):
    """Reasons a verification can be rejected."""

    REQUIRED = "required"
    GOOGLE_REJECTED = "google_rejected"
    HOSTNAME_MISMATCH = "hostname_mismatch"
    ACTION_MISMATCH = "action_mismatch"
    SCORE_TOO_LOW = "score_too_low"
    EXPIRED = "expired"
    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"


ERROR_CODES: dict[str, str] = {
    "missing-input-secret": "The secret parameter is missing.",
    "invalid-input-secret": "The secret parameter is invalid or malformed.",
    "missing-input-response": "The response parameter is missing.",
    "invalid-input-response": "The response parameter is invalid or malformed.",
    "bad-request": "The request is invalid or malformed.",
    "timeout-or-duplicate": (
        "The response is no longer valid: either is too old or has been used previously."
    ),
    "hostname-mismatch": "The hostname in the response does not match your domain.",
    "score-threshold-not-met": "The score is below the required threshold.",
    "action-mismatch": "The action in the response does not match the expected action.",
    "challenge-timeout": "The challenge timeout has been exceeded.",
    "invalid-keys": "Invalid site key or secret key.",
}


def describe_error_code(code: str) -> str:
    return ERROR_CODES.get(code, f"Unknown error: {code}")


def describe_error_codes(codes: Iterable[str]) -> str:
    """Join the human readable messages for ``codes``."""

    return " ".join(describe_error_code(code) for code in codes)


class CaptchaError(Exception):
    """Base class for every error raised by the captcha guard."""

    def __init__(
        self,
        message: str = "",
        *,
        response_data: Mapping[str, Any] | None = None,
        score: float | None = None,
        action: str | None = None,
    ) -> None:
        super().__init__(message or "Captcha verification failed")
        self.response_data = dict(response_data or {})
        self.score = score
        self.action = action

    @property
    def message(self) -> str:
        return str(self)

    def context(self) -> dict[str, Any]:
        context: dict[str, Any] = {
            "message": self.message,
            "response_data": self.response_data,
        }
        if self.score is not None:
            context["score"] = self.score
        if self.action is not None:
            context["action"] = self.action
        return context


class CaptchaConfigurationError(CaptchaError):
    """Raised when the captcha guard is misconfigured."""

    def __init__(self, message: str, *, kind: str) -> None:
        super().__init__(message)
        self.kind = kind

    @classmethod
    def missing_site_key(cls, version: str = "v3") -> "CaptchaConfigurationError":
        return cls(
            f"reCAPTCHA {version} site key is missing. Set CAPTCHA_KEYS__{version.upper()}_SITE_KEY "
            "or CAPTCHA_SITE_KEY in your environment.",
            kind="missing_site_key",
        )

    @classmethod
    def missing_secret_key(cls, version: str = "v3") -> "CaptchaConfigurationError":
        return cls(
            f"reCAPTCHA {version} secret key is missing. Set CAPTCHA_KEYS__{version.upper()}_SECRET_KEY "
            "or CAPTCHA_SECRET_KEY in your environment.",
            kind="missing_secret_key",
        )

    @classmethod
    def invalid_version(cls, version: Any) -> "CaptchaConfigurationError":
        return cls(
            f"Invalid captcha version '{version}'. Supported versions: v2, v3, disabled",
            kind="invalid_version",
        )

    @classmethod
    def invalid_threshold(cls, threshold: Any) -> "CaptchaConfigurationError":
        return cls(
            f"Invalid threshold '{threshold}'. Threshold must be a float between 0.0 and 1.0",
            kind="invalid_threshold",
        )

    @classmethod
    def unsupported_service(cls, service: str) -> "CaptchaConfigurationError":
        return cls(
            f"Unsupported captcha service '{service}'. Currently only 'recaptcha' is supported.",
            kind="unsupported_service",
        )


class CaptchaNetworkError(CaptchaError):
    """The verification endpoint could not be reached or answered garbage."""

    def __init__(
        self,
        detail: str,
        *,
        status_code: int | None = None,
        response_data: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Network error: {detail}", response_data=response_data)
        self.detail = detail
        self.status_code = status_code


class CaptchaTimeoutError(CaptchaNetworkError):
    """The verification endpoint did not answer within the configured timeout."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"verification timed out after {seconds:g} seconds")
        self.seconds = seconds


__all__ = [
    "CaptchaConfigurationError",
    "CaptchaError",
    "CaptchaNetworkError",
    "CaptchaTimeoutError",
    "ERROR_CODES",
    "ErrorKind",
    "describe_error_code",
    "describe_error_codes",
]

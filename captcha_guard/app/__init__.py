"""Google reCAPTCHA v2/v3 verification with caching and FastAPI integration."""
from __future__ import annotations

from .cache import ResultCache, fingerprint
from .client import VerificationClient
from .config import Settings, get_settings
from .errors import (
    ERROR_CODES,
    CaptchaConfigurationError,
    CaptchaError,
    CaptchaNetworkError,
    CaptchaTimeoutError,
    ErrorKind,
    describe_error_codes,
)
from .models import (
    CaptchaVersion,
    Rejection,
    VerificationOutcome,
    VerificationRequest,
    VerificationResponse,
)
from .policy import BypassPolicy, CachePolicy, Policy, VersionKeys
from .service import CaptchaService, DisabledCaptchaService, RecaptchaService, create_captcha_service
from .validator import ResponseValidator

__all__ = [
    "BypassPolicy",
    "CachePolicy",
    "CaptchaConfigurationError",
    "CaptchaError",
    "CaptchaNetworkError",
    "CaptchaService",
    "CaptchaTimeoutError",
    "CaptchaVersion",
    "DisabledCaptchaService",
    "ERROR_CODES",
    "ErrorKind",
    "Policy",
    "RecaptchaService",
    "Rejection",
    "ResponseValidator",
    "ResultCache",
    "Settings",
    "VerificationClient",
    "VerificationOutcome",
    "VerificationRequest",
    "VerificationResponse",
    "VersionKeys",
    "create_captcha_service",
    "describe_error_codes",
    "fingerprint",
    "get_settings",
]

"""Immutable verification policy handed to the service at construction."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .errors import CaptchaConfigurationError
from .models import CaptchaVersion

GOOGLE_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"
LOCALHOST_ALIASES: frozenset[str] = frozenset({"localhost", "127.0.0.1", "::1"})

# Public keys published by Google for automated testing; always pass.
GOOGLE_TEST_SITE_KEY = "6LeIxAcTAAAAAJcZVRqyHh71UMIEGNQ_MXjiZKhI"
GOOGLE_TEST_SECRET_KEY = "6LeIxAcTAAAAAGG-vFI1TnRWxMZNFuojJ4WifJWe"


def validate_threshold(threshold: Any) -> float:
    """Return ``threshold`` as a float in ``[0.0, 1.0]`` or raise."""

    if isinstance(threshold, bool):
        raise CaptchaConfigurationError.invalid_threshold(threshold)
    try:
        value = float(threshold)
    except (TypeError, ValueError) as exc:
        raise CaptchaConfigurationError.invalid_threshold(threshold) from exc
    if not 0.0 <= value <= 1.0:
        raise CaptchaConfigurationError.invalid_threshold(threshold)
    return value


def parse_version(value: CaptchaVersion | str) -> CaptchaVersion:
    if isinstance(value, CaptchaVersion):
        return value
    try:
        return CaptchaVersion(str(value).strip().lower())
    except ValueError as exc:
        raise CaptchaConfigurationError.invalid_version(value) from exc


@dataclass(frozen=True, slots=True)
class BypassPolicy:
    """Explicit switches that disable real verification outside production."""

    environment: str = "production"
    skip_testing: bool = True
    fake_in_development: bool = False

    @property
    def active(self) -> bool:
        env = self.environment.strip().lower()
        if self.skip_testing and env == "testing":
            return True
        if self.fake_in_development and env in {"local", "development"}:
            return True
        return False

    @property
    def reason(self) -> str | None:
        if not self.active:
            return None
        if self.skip_testing and self.environment.strip().lower() == "testing":
            return "skip_testing"
        return "fake_in_development"


@dataclass(frozen=True, slots=True)
class VersionKeys:
    site_key: str | None = None
    secret_key: str | None = None


@dataclass(frozen=True, slots=True)
class CachePolicy:
    enabled: bool = False
    prefix: str = "captcha"
    ttl_seconds: int = 300
    failure_ttl_seconds: int = 60
    cache_failures: bool = True
    operation_timeout_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.ttl_seconds < 1:
            raise CaptchaConfigurationError("cache ttl must be at least 1 second", kind="invalid_cache_ttl")
        if self.failure_ttl_seconds < 1:
            raise CaptchaConfigurationError(
                "cache failure ttl must be at least 1 second", kind="invalid_cache_ttl"
            )


@dataclass(frozen=True, slots=True)
class Policy:
    """Everything the decision logic needs, resolved up front."""

    default_version: CaptchaVersion = CaptchaVersion.V3
    keys: Mapping[CaptchaVersion, VersionKeys] = field(default_factory=dict)
    using_test_keys: bool = False
    verify_url: str = GOOGLE_VERIFY_URL
    timeout_seconds: float = 30.0
    verify_ssl: bool = True
    default_threshold: float = 0.5
    action_thresholds: Mapping[str, float] = field(default_factory=dict)
    action_mismatch_fatal: bool = False
    max_challenge_age_seconds: int = 300
    verify_hostname: bool = True
    expected_hostname: str | None = None
    allow_localhost: bool = True
    bypass: BypassPolicy = field(default_factory=BypassPolicy)
    cache: CachePolicy = field(default_factory=CachePolicy)
    forms: Mapping[str, bool] = field(default_factory=dict)
    log_errors: bool = True
    log_level: str = "warning"
    log_score: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_version", parse_version(self.default_version))
        object.__setattr__(self, "default_threshold", validate_threshold(self.default_threshold))
        thresholds = {
            str(action): validate_threshold(value) for action, value in self.action_thresholds.items()
        }
        object.__setattr__(self, "action_thresholds", MappingProxyType(thresholds))
        keys = {parse_version(version): value for version, value in self.keys.items()}
        object.__setattr__(self, "keys", MappingProxyType(keys))
        object.__setattr__(self, "forms", MappingProxyType(dict(self.forms)))
        if self.timeout_seconds <= 0:
            raise CaptchaConfigurationError("timeout must be positive", kind="invalid_timeout")
        if self.max_challenge_age_seconds < 1:
            raise CaptchaConfigurationError(
                "max challenge age must be at least 1 second", kind="invalid_challenge_age"
            )
        if self.expected_hostname is not None:
            object.__setattr__(self, "expected_hostname", self.expected_hostname.strip().lower() or None)

    def keys_for(self, version: CaptchaVersion) -> VersionKeys:
        return self.keys.get(version, VersionKeys())

    def secret_key(self, version: CaptchaVersion) -> str:
        secret = self.keys_for(version).secret_key
        if not secret:
            raise CaptchaConfigurationError.missing_secret_key(version.value)
        return secret

    def site_key(self, version: CaptchaVersion) -> str:
        site_key = self.keys_for(version).site_key
        if not site_key:
            raise CaptchaConfigurationError.missing_site_key(version.value)
        return site_key

    def threshold_for(self, action: str, override: float | None = None) -> float:
        """Resolve the effective threshold: override, then per-action, then default."""

        if override is not None:
            return validate_threshold(override)
        return self.action_thresholds.get(action, self.default_threshold)

    def form_enabled(self, action: str) -> bool:
        return bool(self.forms.get(action, True))


__all__ = [
    "BypassPolicy",
    "CachePolicy",
    "GOOGLE_TEST_SECRET_KEY",
    "GOOGLE_TEST_SITE_KEY",
    "GOOGLE_VERIFY_URL",
    "LOCALHOST_ALIASES",
    "Policy",
    "VersionKeys",
    "parse_version",
    "validate_threshold",
]

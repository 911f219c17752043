"""Centralized configuration for the captcha guard."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import CaptchaVersion
from .policy import (
    GOOGLE_TEST_SECRET_KEY,
    GOOGLE_TEST_SITE_KEY,
    GOOGLE_VERIFY_URL,
    BypassPolicy,
    CachePolicy,
    Policy,
    VersionKeys,
)

_ROOT_DIR = Path(__file__).resolve().parents[2]
_DEFAULT_ENV_FILES: tuple[Path, ...] = (_ROOT_DIR / ".env",)

_DISABLED_VALUES = {"", "0", "false", "off", "no", "none", "null", "disabled"}

DEFAULT_ACTION_THRESHOLDS: dict[str, float] = {
    "login": 0.5,
    "register": 0.7,
    "contact": 0.5,
    "comment": 0.6,
    "review": 0.6,
    "payment": 0.8,
    "api": 0.7,
    "submit": 0.5,
    "default": 0.5,
}

DEFAULT_FORMS: dict[str, bool] = {
    "login": True,
    "register": True,
    "contact": True,
    "comment": True,
    "review": True,
    "payment": True,
    "api": False,
    "admin": False,
}


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


class KeySettings(BaseModel):
    """Per-version reCAPTCHA credentials."""

    v3_site_key: str | None = None
    v3_secret_key: str | None = None
    v2_site_key: str | None = None
    v2_secret_key: str | None = None
    use_test_keys: bool = False

    @field_validator("v3_site_key", "v3_secret_key", "v2_site_key", "v2_secret_key", mode="before")
    @classmethod
    def _clean_keys(cls, value: str | None) -> str | None:
        return _clean_optional(value)


class ApiSettings(BaseModel):
    """Verification endpoint settings."""

    verify_url: str = GOOGLE_VERIFY_URL
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    verify_ssl: bool = True

    @field_validator("verify_url", mode="before")
    @classmethod
    def _normalise_url(cls, value: str | None) -> str:
        if value is None:
            raise ValueError("CAPTCHA_API__VERIFY_URL must be provided")
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("CAPTCHA_API__VERIFY_URL must be a non-empty string")
        return cleaned


class V3Settings(BaseModel):
    """Score based (v3) policy."""

    default_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    thresholds: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_ACTION_THRESHOLDS))
    action_mismatch_fatal: bool = False

    @field_validator("thresholds")
    @classmethod
    def _check_thresholds(cls, value: dict[str, float]) -> dict[str, float]:
        for action, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"Threshold for action '{action}' must be between 0.0 and 1.0")
        return value


class V2Settings(BaseModel):
    """Checkbox/invisible (v2) policy."""

    max_challenge_age_seconds: int = Field(default=300, ge=1)


class SecuritySettings(BaseModel):
    """Response hardening checks."""

    verify_hostname: bool = True
    expected_hostname: str | None = None
    allow_localhost: bool = True

    @field_validator("expected_hostname", mode="before")
    @classmethod
    def _clean_hostname(cls, value: str | None) -> str | None:
        cleaned = _clean_optional(value)
        return cleaned.lower() if cleaned else None


class CacheSettings(BaseModel):
    """Outcome cache configuration."""

    enabled: bool = False
    prefix: str = "captcha"
    ttl_seconds: int = Field(default=300, ge=1)
    failure_ttl_seconds: int = Field(default=60, ge=1)
    cache_failures: bool = True
    redis_url: str | None = None
    operation_timeout_seconds: float = Field(default=0.5, gt=0, le=10)

    @field_validator("prefix", mode="before")
    @classmethod
    def _normalise_prefix(cls, value: str | None) -> str:
        if value is None:
            return "captcha"
        cleaned = value.strip().strip(":")
        if not cleaned:
            raise ValueError("Cache prefix must be a non-empty string")
        return cleaned

    @field_validator("redis_url", mode="before")
    @classmethod
    def _clean_redis_url(cls, value: str | None) -> str | None:
        return _clean_optional(value)


class ErrorSettings(BaseModel):
    """Error reporting configuration."""

    messages: dict[str, str] = Field(default_factory=dict)
    log_errors: bool = True
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "warning"
    log_score: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: str | None) -> str:
        if value is None:
            return "warning"
        return value.strip().lower()


class MiddlewareSettings(BaseModel):
    """FastAPI guard behaviour."""

    verify_get_requests: bool = False
    token_field: str = "captcha_token"
    fail_open_on_network_error: bool = False


class RateLimitSettings(BaseModel):
    """Per-IP limit on verification attempts."""

    enabled: bool = False
    max_attempts: int = Field(default=10, ge=1)
    decay_seconds: int = Field(default=60, ge=1)


class Settings(BaseSettings):
    """Top level captcha guard configuration."""

    env: str = Field(
        default="production",
        validation_alias=AliasChoices("CAPTCHA_ENV", "APP_ENV", "ENV"),
    )
    app_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CAPTCHA_APP_URL", "APP_URL"),
    )
    version: Literal["v2", "v3", "disabled"] = Field(
        default="v3",
        validation_alias=AliasChoices("CAPTCHA_VERSION"),
    )
    service: str = Field(default="recaptcha", validation_alias=AliasChoices("CAPTCHA_SERVICE"))
    skip_testing: bool = True
    fake_in_development: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "CAPTCHA_FAKE_IN_DEVELOPMENT",
            "CAPTCHA_FAKE_DEVELOPMENT",
        ),
    )
    site_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CAPTCHA_SITE_KEY", "RECAPTCHAV3_SITEKEY"),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CAPTCHA_SECRET_KEY", "RECAPTCHAV3_SECRET"),
    )
    keys: KeySettings = Field(default_factory=KeySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    v3: V3Settings = Field(default_factory=V3Settings)
    v2: V2Settings = Field(default_factory=V2Settings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    errors: ErrorSettings = Field(default_factory=ErrorSettings)
    forms: dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_FORMS))
    middleware: MiddlewareSettings = Field(default_factory=MiddlewareSettings)
    rate_limiting: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(
        env_prefix="CAPTCHA_",
        env_file=_DEFAULT_ENV_FILES,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("version", mode="before")
    @classmethod
    def _normalise_version(cls, value: Any) -> str:
        if value is False or value is None:
            return "disabled"
        cleaned = str(value).strip().lower()
        if cleaned in _DISABLED_VALUES:
            return "disabled"
        if cleaned not in {"v2", "v3"}:
            raise ValueError(f"Invalid captcha version '{value}'. Supported versions: v2, v3, disabled")
        return cleaned

    @field_validator("service", mode="before")
    @classmethod
    def _normalise_service(cls, value: str | None) -> str:
        if value is None:
            return "recaptcha"
        return str(value).strip().lower() or "recaptcha"

    @field_validator("env", mode="before")
    @classmethod
    def _normalise_env(cls, value: str | None) -> str:
        if value is None:
            return "production"
        return value.strip().lower() or "production"

    @field_validator("site_key", "secret_key", "app_url", mode="before")
    @classmethod
    def _clean_optional_strings(cls, value: str | None) -> str | None:
        return _clean_optional(value)

    @property
    def disabled(self) -> bool:
        return self.version == "disabled"

    @property
    def expected_hostname(self) -> str | None:
        """Configured hostname, falling back to the host of ``app_url``."""

        if self.security.expected_hostname:
            return self.security.expected_hostname
        if self.app_url:
            host = urlparse(self.app_url).hostname
            return host.lower() if host else None
        return None

    def resolved_keys(self) -> dict[CaptchaVersion, VersionKeys]:
        """Per-version keys; v2 falls back to the v3 credentials."""

        v3_site = self.keys.v3_site_key or self.site_key
        v3_secret = self.keys.v3_secret_key or self.secret_key
        v2_site = self.keys.v2_site_key or v3_site
        v2_secret = self.keys.v2_secret_key or v3_secret
        if self.keys.use_test_keys:
            v3_site = v3_site or GOOGLE_TEST_SITE_KEY
            v3_secret = v3_secret or GOOGLE_TEST_SECRET_KEY
            v2_site = v2_site or GOOGLE_TEST_SITE_KEY
            v2_secret = v2_secret or GOOGLE_TEST_SECRET_KEY
        return {
            CaptchaVersion.V3: VersionKeys(site_key=v3_site, secret_key=v3_secret),
            CaptchaVersion.V2: VersionKeys(site_key=v2_site, secret_key=v2_secret),
        }

    def to_policy(self) -> Policy:
        """Freeze the settings into the :class:`Policy` used at runtime."""

        default_version = CaptchaVersion.V3 if self.disabled else CaptchaVersion(self.version)
        keys = self.resolved_keys()
        using_test_keys = self.keys.use_test_keys and any(
            entry.site_key == GOOGLE_TEST_SITE_KEY for entry in keys.values()
        )
        return Policy(
            default_version=default_version,
            keys=keys,
            using_test_keys=using_test_keys,
            verify_url=self.api.verify_url,
            timeout_seconds=self.api.timeout_seconds,
            verify_ssl=self.api.verify_ssl,
            default_threshold=self.v3.default_threshold,
            action_thresholds=self.v3.thresholds,
            action_mismatch_fatal=self.v3.action_mismatch_fatal,
            max_challenge_age_seconds=self.v2.max_challenge_age_seconds,
            verify_hostname=self.security.verify_hostname,
            expected_hostname=self.expected_hostname,
            allow_localhost=self.security.allow_localhost,
            bypass=BypassPolicy(
                environment=self.env,
                skip_testing=self.skip_testing,
                fake_in_development=self.fake_in_development,
            ),
            cache=CachePolicy(
                enabled=self.cache.enabled,
                prefix=self.cache.prefix,
                ttl_seconds=self.cache.ttl_seconds,
                failure_ttl_seconds=self.cache.failure_ttl_seconds,
                cache_failures=self.cache.cache_failures,
                operation_timeout_seconds=self.cache.operation_timeout_seconds,
            ),
            forms=self.forms,
            log_errors=self.errors.log_errors,
            log_level=self.errors.log_level,
            log_score=self.errors.log_score,
        )


def get_settings() -> Settings:
    return Settings()


__all__ = [
    "ApiSettings",
    "CacheSettings",
    "DEFAULT_ACTION_THRESHOLDS",
    "DEFAULT_FORMS",
    "ErrorSettings",
    "KeySettings",
    "MiddlewareSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "Settings",
    "V2Settings",
    "V3Settings",
    "get_settings",
]

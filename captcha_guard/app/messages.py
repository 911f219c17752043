"""End-user messages for captcha failures."""
from __future__ import annotations

from typing import Mapping

from .errors import ErrorKind

DEFAULT_MESSAGES: dict[str, str] = {
    "required": "The captcha field is required.",
    "invalid": "The captcha verification failed. Please try again.",
    "google_rejected": "The captcha verification failed. Please try again.",
    "expired": "The captcha has expired. Please refresh and try again.",
    "score_too_low": "The captcha score is too low. Please try again.",
    "action_mismatch": "The captcha action does not match.",
    "hostname_mismatch": "The captcha hostname does not match.",
    "rate_limited": "Too many captcha attempts. Please try again later.",
    "timeout": "The captcha verification timed out. Please try again.",
    "network_error": "Unable to verify captcha due to network error.",
    "invalid_keys": "Invalid captcha configuration. Please contact support.",
}


def user_message(kind: ErrorKind | str, overrides: Mapping[str, str] | None = None) -> str:
    """Return the message shown to the end user for ``kind``.

    Raw Google error codes never reach this table; unknown kinds fall back to
    the generic ``invalid`` message.
    """

    key = kind.value if isinstance(kind, ErrorKind) else str(kind)
    if overrides:
        override = overrides.get(key)
        if override:
            return override
        if key not in DEFAULT_MESSAGES and overrides.get("invalid"):
            return overrides["invalid"]
    return DEFAULT_MESSAGES.get(key, DEFAULT_MESSAGES["invalid"])


__all__ = ["DEFAULT_MESSAGES", "user_message"]

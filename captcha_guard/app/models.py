"""Value objects exchanged between the verification components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .errors import ErrorKind


class CaptchaVersion(str, Enum):
    V2 = "v2"
    V3 = "v3"


@dataclass(frozen=True, slots=True)
class VerificationRequest:
    """Input to :meth:`RecaptchaService.verify_detailed`."""

    token: str
    action: str = "default"
    threshold_override: float | None = None
    remote_ip: str | None = None
    version: CaptchaVersion = CaptchaVersion.V3


class VerificationResponse(BaseModel):
    """Body returned by the ``siteverify`` endpoint."""

    success: bool = False
    error_codes: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("error-codes", "error_codes"),
    )
    challenge_ts: datetime | None = None
    hostname: str | None = None
    score: float | None = None
    action: str | None = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    @field_validator("error_codes", mode="before")
    @classmethod
    def _coerce_codes(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]

    @field_validator("hostname", "action", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None


@dataclass(frozen=True, slots=True)
class Rejection:
    """Why a verification was not accepted."""

    kind: ErrorKind
    message: str
    error_codes: tuple[str, ...] = ()
    expected: str | None = None
    actual: str | None = None
    threshold: float | None = None
    action: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.error_codes:
            payload["error_codes"] = list(self.error_codes)
        for name in ("expected", "actual", "threshold", "action"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


@dataclass(frozen=True, slots=True)
class VerificationOutcome:
    """Decision produced for a single verification."""

    accepted: bool
    reason: Rejection | None = None
    score: float | None = None
    cached: bool = False
    skipped: bool = False
    warnings: tuple[str, ...] = field(default=())

    @classmethod
    def accept(cls, score: float | None = None, **kwargs: Any) -> "VerificationOutcome":
        return cls(accepted=True, score=score, **kwargs)

    @classmethod
    def reject(cls, reason: Rejection, score: float | None = None) -> "VerificationOutcome":
        return cls(accepted=False, reason=reason, score=score)

    def as_dict(self) -> dict[str, Any]:
        return {
            "accepted": self.accepted,
            "reason": self.reason.as_dict() if self.reason else None,
            "score": self.score,
            "cached": self.cached,
            "skipped": self.skipped,
            "warnings": list(self.warnings),
        }


__all__ = [
    "CaptchaVersion",
    "Rejection",
    "VerificationOutcome",
    "VerificationRequest",
    "VerificationResponse",
]

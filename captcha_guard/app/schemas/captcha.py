"""Pydantic models for the captcha diagnostic endpoints."""

from __future__ import annotations

from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..messages import user_message
from ..models import CaptchaVersion, VerificationOutcome


class VerifyRequest(BaseModel):
    """Request body for ``POST /captcha/verify``."""

    token: str = Field(default="", alias="captchaToken")
    action: str = "default"
    threshold: Optional[float] = None
    version: Optional[CaptchaVersion] = None

    model_config = ConfigDict(populate_by_name=True)


class RejectionPayload(BaseModel):
    kind: str
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None
    threshold: Optional[float] = None
    action: Optional[str] = None


class VerifyResponse(BaseModel):
    """Response schema for ``POST /captcha/verify``."""

    accepted: bool
    reason: Optional[RejectionPayload] = None
    score: Optional[float] = None
    cached: bool = False
    skipped: bool = False
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(
        cls, outcome: VerificationOutcome, messages: Mapping[str, str] | None = None
    ) -> "VerifyResponse":
        """Build the public payload; raw endpoint error codes are left out."""

        payload = outcome.as_dict()
        reason = payload.get("reason")
        if reason:
            reason.pop("error_codes", None)
            reason["message"] = user_message(outcome.reason.kind, messages)
        return cls.model_validate(payload)


class CaptchaConfigResponse(BaseModel):
    """Response schema for ``GET /captcha/config``."""

    version: str
    site_key: str
    enabled: bool

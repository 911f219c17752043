"""Pure decision logic applied to ``siteverify`` responses."""
from __future__ import annotations

from datetime import datetime, timezone

from .errors import ErrorKind, describe_error_codes
from .logging import get_logger
from .models import CaptchaVersion, Rejection, VerificationOutcome, VerificationResponse
from .policy import LOCALHOST_ALIASES, Policy, validate_threshold

logger = get_logger("captcha_guard.validator")


class ResponseValidator:
    """Turn a raw verification response into an accept/reject decision.

    Checks run in a fixed order and stop at the first failure:

    1. the ``success`` flag (mapped through the Google error-code table),
    2. the hostname (when enabled),
    3. the challenge age (v2 only),
    4. the action echoed by Google (v3 only; advisory unless configured fatal),
    5. the score threshold (v3 only).
    """

    def __init__(self, policy: Policy) -> None:
        validate_threshold(policy.default_threshold)
        self._policy = policy

    @property
    def policy(self) -> Policy:
        return self._policy

    def validate(
        self,
        response: VerificationResponse,
        *,
        version: CaptchaVersion,
        action: str = "default",
        threshold_override: float | None = None,
        now: datetime | None = None,
    ) -> VerificationOutcome:
        threshold = self._policy.threshold_for(action, threshold_override)
        score = response.score if version is CaptchaVersion.V3 else None

        if not response.success:
            codes = tuple(response.error_codes) or ("unknown-error",)
            rejection = Rejection(
                kind=ErrorKind.GOOGLE_REJECTED,
                message=describe_error_codes(codes),
                error_codes=codes,
            )
            return VerificationOutcome.reject(rejection, score=score)

        if self._policy.verify_hostname:
            rejection = self._check_hostname(response.hostname)
            if rejection is not None:
                return VerificationOutcome.reject(rejection, score=score)

        if version is CaptchaVersion.V2:
            rejection = self._check_timestamp(response.challenge_ts, now)
            if rejection is not None:
                return VerificationOutcome.reject(rejection)
            return VerificationOutcome.accept()

        warnings: list[str] = []
        if response.action and response.action != action:
            message = f"Expected action '{action}' but got '{response.action}'"
            if self._policy.action_mismatch_fatal:
                rejection = Rejection(
                    kind=ErrorKind.ACTION_MISMATCH,
                    message=message,
                    expected=action,
                    actual=response.action,
                )
                return VerificationOutcome.reject(rejection, score=score)
            logger.warning("captcha action mismatch", expected=action, actual=response.action)
            warnings.append(message)

        if score is not None and score < threshold:
            rejection = Rejection(
                kind=ErrorKind.SCORE_TOO_LOW,
                message=f"Captcha score {score} is below threshold {threshold} for action '{action}'",
                threshold=threshold,
                action=action,
            )
            return VerificationOutcome.reject(rejection, score=score)

        return VerificationOutcome.accept(score=score, warnings=tuple(warnings))

    def _check_hostname(self, hostname: str | None) -> Rejection | None:
        if not hostname:
            return None
        actual = hostname.lower()
        if self._policy.allow_localhost and actual in LOCALHOST_ALIASES:
            return None
        expected = self._policy.expected_hostname
        if expected is not None and actual == expected:
            return None
        if expected is None:
            message = f"No expected hostname is configured; got '{actual}'"
        else:
            message = f"Expected hostname '{expected}' but got '{actual}'"
        return Rejection(
            kind=ErrorKind.HOSTNAME_MISMATCH,
            message=message,
            expected=expected,
            actual=actual,
        )

    def _check_timestamp(self, challenge_ts: datetime | None, now: datetime | None) -> Rejection | None:
        if challenge_ts is None:
            return None
        if challenge_ts.tzinfo is None:
            challenge_ts = challenge_ts.replace(tzinfo=timezone.utc)
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        age = (current - challenge_ts).total_seconds()
        if age > self._policy.max_challenge_age_seconds:
            return Rejection(
                kind=ErrorKind.EXPIRED,
                message=f"Challenge is {int(age)} seconds old; maximum is "
                f"{self._policy.max_challenge_age_seconds}",
            )
        return None


__all__ = ["ResponseValidator"]

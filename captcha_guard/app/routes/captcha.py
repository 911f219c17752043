"""Diagnostic routes exposing captcha verification."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..config import Settings
from ..dependencies import client_ip, get_captcha_service, get_captcha_settings
from ..errors import CaptchaConfigurationError, CaptchaNetworkError
from ..logging import get_logger
from ..schemas.captcha import CaptchaConfigResponse, VerifyRequest, VerifyResponse
from ..service import CaptchaService

logger = get_logger("captcha_guard.routes.captcha")

router = APIRouter(prefix="/captcha", tags=["captcha"])


@router.post("/verify", response_model=VerifyResponse, response_model_exclude_none=True)
async def verify_token(
    payload: VerifyRequest,
    request: Request,
    service: CaptchaService = Depends(get_captcha_service),
    settings: Settings = Depends(get_captcha_settings),
) -> VerifyResponse:
    """Verify ``payload.token`` and report the decision with user-facing messages."""

    try:
        verification = service.build_request(
            payload.token,
            payload.action,
            payload.threshold,
            payload.version,
            remote_ip=client_ip(request),
        )
        outcome = await service.verify_detailed(verification)
    except CaptchaConfigurationError as exc:
        logger.error("captcha configuration error", kind=exc.kind, error=exc.message)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message) from exc
    except CaptchaNetworkError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message) from exc
    return VerifyResponse.from_outcome(outcome, settings.errors.messages)


@router.get("/config", response_model=CaptchaConfigResponse)
async def get_captcha_config(
    service: CaptchaService = Depends(get_captcha_service),
    settings: Settings = Depends(get_captcha_settings),
) -> CaptchaConfigResponse:
    """Return the public configuration needed by front-end widgets."""

    try:
        site_key = service.site_key()
    except CaptchaConfigurationError:
        site_key = ""
    return CaptchaConfigResponse(
        version=settings.version,
        site_key=site_key,
        enabled=service.enabled,
    )

"""FastAPI application factory for the captcha guard."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from .config import Settings, get_settings
from .logging import bind_contextvars, clear_contextvars, setup_logging
from .routes import captcha
from .service import CaptchaService, create_captcha_service


def create_app(
    *,
    settings: Settings | None = None,
    service: CaptchaService | None = None,
    api_prefix: str | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Parameters
    ----------
    settings:
        Configuration to use; loaded from the environment when omitted.
    service:
        Pre-built captcha service. Tests inject one wired to a mock transport.
    api_prefix:
        Optional path prefix under which the captcha router is mounted.
    """

    resolved = settings or get_settings()
    setup_logging(level=resolved.errors.log_level)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        try:
            yield
        finally:
            await app.state.captcha_service.aclose()
            limiter = getattr(app.state, "captcha_rate_limiter", None)
            if limiter is not None:
                await limiter.close()

    app = FastAPI(title="Captcha Guard", version="1.0", lifespan=_lifespan)
    app.state.captcha_settings = resolved
    app.state.captcha_service = service or create_captcha_service(resolved)

    @app.middleware("http")
    async def _request_context(request: Request, call_next):
        clear_contextvars()
        bind_contextvars(method=request.method, path=request.url.path)
        try:
            return await call_next(request)
        finally:
            clear_contextvars()

    router_prefix = api_prefix.rstrip("/") if api_prefix else ""
    if router_prefix and not router_prefix.startswith("/"):
        router_prefix = f"/{router_prefix}"
    app.include_router(captcha.router, prefix=router_prefix)
    return app


__all__ = ["create_app"]

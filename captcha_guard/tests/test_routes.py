"""Integration tests for the FastAPI guard and diagnostic routes."""

from __future__ import annotations

import httpx
import pytest
import structlog
from fastapi import Depends, status
from httpx import ASGITransport, AsyncClient

from captcha_guard.app.cache import ResultCache
from captcha_guard.app.config import Settings
from captcha_guard.app.dependencies import require_captcha
from captcha_guard.app.main import create_app
from captcha_guard.app.ratelimit import CaptchaRateLimiter
from captcha_guard.app.service import DisabledCaptchaService, RecaptchaService
from captcha_guard.app.storage import MemoryCache

from .conftest import FakeEndpoint


def _build_app(endpoint: FakeEndpoint, service=None, **overrides):
    options = {"site_key": "site", "secret_key": "secret", "security": {"expected_hostname": "example.com"}}
    options.update(overrides)
    settings = Settings(**options)
    if service is None:
        policy = settings.to_policy()
        service = RecaptchaService(
            policy,
            client=endpoint.client(),
            cache=ResultCache(MemoryCache(), policy.cache),
        )
    app = create_app(settings=settings, service=service)

    @app.post("/login")
    async def login(outcome=Depends(require_captcha("login"))):
        return {"ok": True, "score": outcome.score if outcome else None}

    @app.get("/search")
    async def search(outcome=Depends(require_captcha("login"))):
        return {"ok": True, "checked": outcome is not None}

    @app.post("/admin")
    async def admin(outcome=Depends(require_captcha("admin"))):
        return {"ok": True}

    return app


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_guard_accepts_valid_json_token() -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.9, "action": "login"})
    app = _build_app(endpoint)

    async with _client(app) as client:
        response = await client.post("/login", json={"captcha_token": "tok"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ok": True, "score": 0.9}
    assert endpoint.calls[0]["response"] == "tok"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"data": {"g-recaptcha-response": "tok"}},
        {"params": {"recaptcha": "tok"}},
        {"headers": {"X-Captcha-Token": "tok"}},
    ],
)
async def test_guard_finds_token_in_fallback_locations(kwargs) -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.9})
    app = _build_app(endpoint)

    async with _client(app) as client:
        response = await client.post("/login", **kwargs)

    assert response.status_code == status.HTTP_200_OK
    assert endpoint.calls[0]["response"] == "tok"


@pytest.mark.asyncio
async def test_guard_rejects_missing_token() -> None:
    endpoint = FakeEndpoint()
    app = _build_app(endpoint)

    async with _client(app) as client:
        response = await client.post("/login", json={})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = response.json()["detail"]
    assert detail["captcha_error"] is True
    assert detail["errors"]["captcha"] == ["The captcha field is required."]
    assert endpoint.call_count == 0


@pytest.mark.asyncio
async def test_guard_hides_google_error_codes() -> None:
    endpoint = FakeEndpoint({"success": False, "error-codes": ["invalid-input-secret"]})
    app = _build_app(endpoint, errors={"messages": {"google_rejected": "Please try again."}})

    async with _client(app) as client:
        response = await client.post("/login", json={"captcha_token": "tok"})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["detail"]["errors"]["captcha"] == ["Please try again."]
    assert "invalid-input-secret" not in response.text


@pytest.mark.asyncio
async def test_guard_skips_get_and_disabled_forms() -> None:
    endpoint = FakeEndpoint()
    app = _build_app(endpoint)

    async with _client(app) as client:
        search = await client.get("/search")
        admin = await client.post("/admin", json={})

    assert search.json() == {"ok": True, "checked": False}
    assert admin.status_code == status.HTTP_200_OK
    assert endpoint.call_count == 0


@pytest.mark.asyncio
async def test_guard_verifies_get_when_configured() -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.9})
    app = _build_app(endpoint, middleware={"verify_get_requests": True})

    async with _client(app) as client:
        response = await client.get("/search", params={"captcha_token": "tok"})

    assert response.json() == {"ok": True, "checked": True}


@pytest.mark.asyncio
async def test_guard_network_error_fails_closed() -> None:
    endpoint = FakeEndpoint()
    endpoint.error = httpx.ConnectError("down")
    app = _build_app(endpoint)

    async with _client(app) as client:
        response = await client.post("/login", json={"captcha_token": "tok"})

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["detail"]["errors"]["captcha"] == [
        "Unable to verify captcha due to network error."
    ]


@pytest.mark.asyncio
async def test_guard_network_error_can_fail_open() -> None:
    endpoint = FakeEndpoint()
    endpoint.error = httpx.ReadTimeout("slow")
    app = _build_app(endpoint, middleware={"fail_open_on_network_error": True})

    async with _client(app) as client:
        response = await client.post("/login", json={"captcha_token": "tok"})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"ok": True, "score": None}


@pytest.mark.asyncio
async def test_guard_rate_limits_clients() -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.9})
    app = _build_app(endpoint, rate_limiting={"enabled": True, "max_attempts": 2})

    async with _client(app) as client:
        codes = [
            (await client.post("/login", json={"captcha_token": f"tok-{index}"})).status_code
            for index in range(3)
        ]

    assert codes == [200, 200, 429]
    assert endpoint.call_count == 2


@pytest.mark.asyncio
async def test_disabled_service_lets_requests_through() -> None:
    endpoint = FakeEndpoint()
    app = _build_app(endpoint, service=DisabledCaptchaService(), version="disabled")

    async with _client(app) as client:
        response = await client.post("/login", json={})

    assert response.status_code == status.HTTP_200_OK
    assert endpoint.call_count == 0


@pytest.mark.asyncio
async def test_verify_route_reports_detailed_outcome() -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.3, "action": "login"})
    app = _build_app(endpoint)

    async with _client(app) as client:
        response = await client.post(
            "/captcha/verify", json={"captchaToken": "tok", "action": "login"}
        )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["accepted"] is False
    assert body["score"] == 0.3
    assert body["reason"]["kind"] == "score_too_low"
    assert body["reason"]["threshold"] == 0.5


@pytest.mark.asyncio
async def test_verify_route_maps_errors() -> None:
    endpoint = FakeEndpoint()
    endpoint.error = httpx.ConnectError("down")
    app = _build_app(endpoint)

    async with _client(app) as client:
        network = await client.post("/captcha/verify", json={"token": "tok"})
        config = await client.post("/captcha/verify", json={"token": "tok", "threshold": 2})

    assert network.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert config.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert endpoint.call_count == 1


@pytest.mark.asyncio
async def test_config_route() -> None:
    app = _build_app(FakeEndpoint())

    async with _client(app) as client:
        response = await client.get("/captcha/config")

    assert response.json() == {"version": "v3", "site_key": "site", "enabled": True}


class _BrokenCache(MemoryCache):
    closed = False

    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl=None):
        raise ConnectionError("redis down")

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_guard_survives_rate_limit_backend_outage() -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.9})
    app = _build_app(endpoint, rate_limiting={"enabled": True, "max_attempts": 1})
    cache = _BrokenCache()
    app.state.captcha_rate_limiter = CaptchaRateLimiter(cache=cache, max_attempts=1, window_seconds=60)

    async with _client(app) as client:
        codes = [
            (await client.post("/login", json={"captcha_token": f"tok-{index}"})).status_code
            for index in range(2)
        ]

    assert codes == [200, 200]

    async with app.router.lifespan_context(app):
        pass
    assert cache.closed


@pytest.mark.asyncio
async def test_verify_route_hides_google_error_codes() -> None:
    endpoint = FakeEndpoint({"success": False, "error-codes": ["invalid-input-secret"]})
    app = _build_app(endpoint, errors={"messages": {"google_rejected": "Please try again."}})

    async with _client(app) as client:
        response = await client.post("/captcha/verify", json={"token": "tok"})

    assert response.status_code == status.HTTP_200_OK
    reason = response.json()["reason"]
    assert reason == {"kind": "google_rejected", "message": "Please try again."}
    assert "invalid-input-secret" not in response.text
    assert "secret parameter" not in response.text


@pytest.mark.asyncio
async def test_guard_binds_request_log_context() -> None:
    endpoint = FakeEndpoint({"success": True, "score": 0.9})
    app = _build_app(endpoint)

    @app.post("/context")
    async def context(outcome=Depends(require_captcha("login"))):
        return structlog.contextvars.get_contextvars()

    async with _client(app) as client:
        response = await client.post(
            "/context",
            json={"captcha_token": "tok"},
            headers={"X-Forwarded-For": "198.51.100.7"},
        )

    assert response.json() == {
        "method": "POST",
        "path": "/context",
        "captcha_action": "login",
        "client_ip": "198.51.100.7",
    }
    assert structlog.contextvars.get_contextvars() == {}

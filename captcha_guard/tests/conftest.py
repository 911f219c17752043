"""Common test fixtures for captcha guard unit tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from captcha_guard.app.client import VerificationClient
from captcha_guard.app.models import CaptchaVersion
from captcha_guard.app.policy import BypassPolicy, CachePolicy, Policy, VersionKeys

VERIFY_URL = "https://captcha.test/siteverify"


class FakeEndpoint:
    """Scripted stand-in for the ``siteverify`` endpoint."""

    def __init__(self, body: Any = None, *, status_code: int = 200) -> None:
        self.body = body if body is not None else {"success": True}
        self.status_code = status_code
        self.calls: list[dict[str, str]] = []
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        self.calls.append(form)
        if self.error is not None:
            raise self.error
        if isinstance(self.body, (bytes, str)):
            return httpx.Response(self.status_code, content=self.body)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def client(self) -> VerificationClient:
        return VerificationClient(verify_url=VERIFY_URL, transport=httpx.MockTransport(self))


@pytest.fixture
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture
def make_policy() -> Callable[..., Policy]:
    def factory(**overrides: Any) -> Policy:
        cache = overrides.pop("cache", None)
        if cache is None:
            cache = CachePolicy(enabled=overrides.pop("cache_enabled", False))
        options: dict[str, Any] = {
            "keys": {
                CaptchaVersion.V3: VersionKeys(site_key="site-v3", secret_key="secret-v3"),
                CaptchaVersion.V2: VersionKeys(site_key="site-v2", secret_key="secret-v2"),
            },
            "verify_url": VERIFY_URL,
            "expected_hostname": "example.com",
            "bypass": BypassPolicy(environment="production"),
            "cache": cache,
        }
        options.update(overrides)
        return Policy(**options)

    return factory


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "ENV",
        "APP_ENV",
        "APP_URL",
        "CAPTCHA_ENV",
        "CAPTCHA_VERSION",
        "CAPTCHA_SITE_KEY",
        "CAPTCHA_SECRET_KEY",
        "CAPTCHA_SERVICE",
        "CAPTCHA_KEYS__V3_SITE_KEY",
        "CAPTCHA_KEYS__V2_SECRET_KEY",
        "RECAPTCHAV3_SITEKEY",
        "RECAPTCHAV3_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)

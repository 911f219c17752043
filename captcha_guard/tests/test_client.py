"""Transport level tests for the verification client."""

from __future__ import annotations

import httpx
import pytest

from captcha_guard.app.errors import CaptchaNetworkError, CaptchaTimeoutError

from .conftest import FakeEndpoint


@pytest.mark.asyncio
async def test_send_posts_form_and_parses_response() -> None:
    endpoint = FakeEndpoint(
        {
            "success": True,
            "score": 0.8,
            "action": "login",
            "hostname": "example.com",
            "challenge_ts": "2024-05-01T12:00:00Z",
            "error-codes": [],
        }
    )
    client = endpoint.client()

    response = await client.send("tok123", "secret", "203.0.113.7", timeout_seconds=5)

    assert endpoint.calls == [{"secret": "secret", "response": "tok123", "remoteip": "203.0.113.7"}]
    assert response.success is True
    assert response.score == 0.8
    assert response.action == "login"
    assert response.hostname == "example.com"
    assert response.challenge_ts.year == 2024
    await client.aclose()


@pytest.mark.asyncio
async def test_send_omits_missing_remote_ip() -> None:
    endpoint = FakeEndpoint({"success": False, "error-codes": ["invalid-input-response"]})
    client = endpoint.client()

    response = await client.send("tok", "secret")

    assert "remoteip" not in endpoint.calls[0]
    assert response.error_codes == ["invalid-input-response"]
    await client.aclose()


@pytest.mark.asyncio
async def test_timeout_is_typed() -> None:
    endpoint = FakeEndpoint()
    endpoint.error = httpx.ReadTimeout("slow")
    client = endpoint.client()

    with pytest.raises(CaptchaTimeoutError) as excinfo:
        await client.send("tok", "secret", timeout_seconds=3)

    assert excinfo.value.seconds == 3
    assert endpoint.call_count == 1


@pytest.mark.asyncio
async def test_connection_error_is_network_error() -> None:
    endpoint = FakeEndpoint()
    endpoint.error = httpx.ConnectError("refused")
    client = endpoint.client()

    with pytest.raises(CaptchaNetworkError) as excinfo:
        await client.send("tok", "secret")

    assert not isinstance(excinfo.value, CaptchaTimeoutError)
    assert endpoint.call_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 500, 503])
async def test_non_2xx_is_network_error(status_code: int) -> None:
    endpoint = FakeEndpoint({"success": True}, status_code=status_code)
    client = endpoint.client()

    with pytest.raises(CaptchaNetworkError) as excinfo:
        await client.send("tok", "secret")

    assert excinfo.value.status_code == status_code


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"<html>oops</html>", b"[1, 2]", b'{"success": "maybe"}'])
async def test_unparseable_body_is_network_error(body: bytes) -> None:
    client = FakeEndpoint(body).client()

    with pytest.raises(CaptchaNetworkError):
        await client.send("tok", "secret")


@pytest.mark.asyncio
async def test_invalid_body_is_attached_to_error() -> None:
    client = FakeEndpoint({"success": "maybe", "score": 0.4}).client()

    with pytest.raises(CaptchaNetworkError) as excinfo:
        await client.send("tok", "secret")

    assert excinfo.value.context()["response_data"] == {"success": "maybe", "score": 0.4}

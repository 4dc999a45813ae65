import json

import httpx
import pytest

from loginguard.services.identity_provider import (
    GoTrueIdentityProvider,
    IdentityProviderError,
    IdentityProviderTimeout,
)

BASE_URL = "https://project.supabase.co"


def make_provider(handler) -> GoTrueIdentityProvider:
    return GoTrueIdentityProvider(
        base_url=BASE_URL, api_key="anon-key", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_sign_in_success_returns_subject_and_session() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["apikey"] = request.headers.get("apikey")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "access_token": "at",
                "refresh_token": "rt",
                "token_type": "bearer",
                "expires_in": 3600,
                "user": {"id": "user-123", "email": "alice@example.com"},
            },
        )

    result = await make_provider(handler).sign_in("alice@example.com", "s3cret")

    assert result.ok is True
    assert result.subject_id == "user-123"
    assert result.session["access_token"] == "at"
    assert result.mfa_used is False
    assert seen["url"] == f"{BASE_URL}/auth/v1/token?grant_type=password"
    assert seen["apikey"] == "anon-key"
    assert seen["body"] == {"email": "alice@example.com", "password": "s3cret"}


@pytest.mark.asyncio
async def test_sign_in_reports_mfa_usage() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "access_token": "at",
                "user": {"id": "user-123"},
                "amr": [{"method": "password"}, {"method": "totp"}],
            },
        )

    result = await make_provider(handler).sign_in("alice@example.com", "s3cret")

    assert result.mfa_used is True


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 401, 422])
async def test_sign_in_invalid_credentials(status_code) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
        )

    result = await make_provider(handler).sign_in("alice@example.com", "wrong")

    assert result.ok is False
    assert result.subject_id is None
    assert result.failure_reason == "Invalid login credentials"


@pytest.mark.asyncio
async def test_sign_in_server_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(IdentityProviderError):
        await make_provider(handler).sign_in("alice@example.com", "s3cret")


@pytest.mark.asyncio
async def test_sign_in_timeout_raises_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(IdentityProviderTimeout):
        await make_provider(handler).sign_in("alice@example.com", "s3cret")


@pytest.mark.asyncio
async def test_sign_in_missing_user_id_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "at", "user": {}})

    with pytest.raises(IdentityProviderError):
        await make_provider(handler).sign_in("alice@example.com", "s3cret")


@pytest.mark.asyncio
async def test_get_user_sends_bearer_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/auth/v1/user"
        assert request.headers["Authorization"] == "Bearer at"
        return httpx.Response(200, json={"id": "user-123", "email": "alice@example.com"})

    user = await make_provider(handler).get_user("at")

    assert user["id"] == "user-123"


@pytest.mark.asyncio
async def test_get_user_rejected_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"msg": "invalid JWT"})

    with pytest.raises(PermissionError):
        await make_provider(handler).get_user("expired")


@pytest.mark.asyncio
async def test_verify_mfa_challenge_runs_challenge_then_verify() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path.endswith("/challenge"):
            return httpx.Response(200, json={"id": "challenge-1"})
        body = json.loads(request.content)
        assert body == {"challenge_id": "challenge-1", "code": "123456"}
        return httpx.Response(200, json={"access_token": "at2"})

    result = await make_provider(handler).verify_mfa_challenge("at", "factor-1", "123456")

    assert result["access_token"] == "at2"
    assert calls == [
        "/auth/v1/factors/factor-1/challenge",
        "/auth/v1/factors/factor-1/verify",
    ]


@pytest.mark.asyncio
async def test_verify_mfa_wrong_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/challenge"):
            return httpx.Response(200, json={"id": "challenge-1"})
        return httpx.Response(422, json={"msg": "Invalid TOTP code entered"})

    with pytest.raises(ValueError, match="Invalid TOTP code"):
        await make_provider(handler).verify_mfa_challenge("at", "factor-1", "000000")


@pytest.mark.asyncio
async def test_enroll_mfa_requests_totp_factor() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/auth/v1/factors"
        assert json.loads(request.content) == {"factor_type": "totp", "friendly_name": "phone"}
        return httpx.Response(
            200, json={"id": "factor-1", "type": "totp", "totp": {"secret": "ABC", "uri": "otpauth://"}}
        )

    factor = await make_provider(handler).enroll_mfa("at", "phone")

    assert factor["id"] == "factor-1"

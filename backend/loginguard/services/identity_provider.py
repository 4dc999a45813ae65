# backend/loginguard/services/identity_provider.py
"""
Identity provider client.

Talks to a GoTrue-compatible auth server (Supabase Auth) over REST. Only the
provider can decide whether a credential is valid; everything about sessions
and MFA factors stays on its side.
"""

import logging
from typing import Any, NamedTuple, Protocol

import httpx

from loginguard.core.config import settings

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_STATUSES = {400, 401, 422}


class IdentityProviderError(Exception):
    """Provider unreachable, failing or answering with an unexpected payload."""


class IdentityProviderTimeout(IdentityProviderError):
    pass


class SignInResult(NamedTuple):
    ok: bool
    subject_id: str | None = None
    failure_reason: str | None = None
    session: dict[str, Any] | None = None
    mfa_used: bool = False


class IdentityProvider(Protocol):
    async def sign_in(self, identity: str, credential: str) -> SignInResult: ...

    async def get_user(self, access_token: str) -> dict[str, Any]: ...

    async def enroll_mfa(self, access_token: str, friendly_name: str | None = None) -> dict[str, Any]: ...

    async def verify_mfa_challenge(self, access_token: str, factor_id: str, code: str) -> dict[str, Any]: ...


class GoTrueIdentityProvider:
    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self, access_token: str | None = None) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return httpx.AsyncClient(
            base_url=f"{self.base_url}/auth/v1",
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client(access_token) as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise IdentityProviderTimeout(f"Identity provider timed out on {path}") from e
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Identity provider request failed on {path}: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise IdentityProviderError(
                f"Identity provider returned non-JSON body (status {response.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise IdentityProviderError("Identity provider returned an unexpected payload")
        return data

    @staticmethod
    def _error_message(data: dict[str, Any]) -> str:
        for key in ("error_description", "msg", "message", "error"):
            if data.get(key):
                return str(data[key])
        return "Invalid login credentials"

    def _raise_for_server_error(self, response: httpx.Response, action: str) -> None:
        if response.status_code >= 500:
            logger.error(f"Identity provider {action} failed: {response.status_code}")
            raise IdentityProviderError(
                f"Identity provider {action} failed with status {response.status_code}"
            )

    async def sign_in(self, identity: str, credential: str) -> SignInResult:
        response = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": identity, "password": credential},
        )
        self._raise_for_server_error(response, "sign-in")

        if response.status_code in INVALID_CREDENTIAL_STATUSES:
            try:
                reason = self._error_message(self._json(response))
            except IdentityProviderError:
                reason = "Invalid login credentials"
            return SignInResult(ok=False, failure_reason=reason)

        if not response.is_success:
            raise IdentityProviderError(
                f"Unexpected identity provider status {response.status_code} on sign-in"
            )

        data = self._json(response)
        user = data.get("user") or {}
        subject_id = user.get("id")
        if not subject_id:
            raise IdentityProviderError("Identity provider sign-in response has no user id")

        session = {
            key: data[key]
            for key in ("access_token", "refresh_token", "token_type", "expires_in", "expires_at")
            if key in data
        }
        amr = data.get("amr") or user.get("amr") or []
        mfa_used = any(
            isinstance(entry, dict) and entry.get("method") in ("totp", "mfa/totp") for entry in amr
        ) or any(f.get("status") == "verified" for f in user.get("factors") or [] if isinstance(f, dict))
        return SignInResult(ok=True, subject_id=str(subject_id), session=session, mfa_used=mfa_used)

    async def get_user(self, access_token: str) -> dict[str, Any]:
        response = await self._request("GET", "/user", access_token=access_token)
        self._raise_for_server_error(response, "user lookup")
        if response.status_code in (401, 403):
            raise PermissionError("Invalid or expired access token")
        if not response.is_success:
            raise IdentityProviderError(f"User lookup failed with status {response.status_code}")
        return self._json(response)

    async def enroll_mfa(self, access_token: str, friendly_name: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"factor_type": "totp"}
        if friendly_name:
            payload["friendly_name"] = friendly_name
        response = await self._request("POST", "/factors", access_token=access_token, json=payload)
        self._raise_for_server_error(response, "MFA enroll")
        data = self._json(response)
        if not response.is_success:
            raise ValueError(self._error_message(data))
        return data

    async def verify_mfa_challenge(self, access_token: str, factor_id: str, code: str) -> dict[str, Any]:
        """Create a challenge for the factor, then verify the code against it."""
        challenge = await self._request(
            "POST", f"/factors/{factor_id}/challenge", access_token=access_token
        )
        self._raise_for_server_error(challenge, "MFA challenge")
        challenge_data = self._json(challenge)
        if not challenge.is_success:
            raise ValueError(self._error_message(challenge_data))

        challenge_id = challenge_data.get("id")
        if not challenge_id:
            raise IdentityProviderError("MFA challenge response has no id")

        verify = await self._request(
            "POST",
            f"/factors/{factor_id}/verify",
            access_token=access_token,
            json={"challenge_id": challenge_id, "code": code},
        )
        self._raise_for_server_error(verify, "MFA verify")
        verify_data = self._json(verify)
        if not verify.is_success:
            raise ValueError(self._error_message(verify_data))
        return verify_data


def build_identity_provider() -> GoTrueIdentityProvider:
    return GoTrueIdentityProvider(
        base_url=settings.IDENTITY_PROVIDER_URL,
        api_key=settings.IDENTITY_PROVIDER_API_KEY,
        timeout=settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
    )

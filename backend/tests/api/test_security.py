from unittest.mock import patch

import pytest
from httpx import AsyncClient

from loginguard.core.config import settings
from loginguard.schemas.security_event import SecurityEventType
from loginguard.services import event_recorder

API = settings.API_V1_STR
ALICE = "alice@example.com"


@pytest.fixture
def alice_token(fake_provider) -> str:
    return fake_provider.add_account(ALICE, "correct-horse", "alice-id")


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_security_endpoints_require_a_bearer_token(test_client: AsyncClient) -> None:
    response = await test_client.get(f"{API}/security/events")
    assert response.status_code == 401

    response = await test_client.get(f"{API}/security/events", headers=_auth("forged"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_events_only_show_own_rows(
    test_client: AsyncClient, db_session, alice_token
) -> None:
    await event_recorder.record_event(
        db_session, "alice-id", SecurityEventType.LOGIN_SUCCESS, None, "1.1.1.1", None
    )
    await event_recorder.record_event(
        db_session, "bob-id", SecurityEventType.LOGIN_SUCCESS, None, "2.2.2.2", None
    )

    response = await test_client.get(f"{API}/security/events", headers=_auth(alice_token))

    assert response.status_code == 200
    events = response.json()
    assert len(events) == 1
    assert events[0]["subject_id"] == "alice-id"
    assert events[0]["event_type"] == "login_success"
    assert events[0]["metadata"]["method"] == "password"


@pytest.mark.asyncio
async def test_events_limit_is_bounded(test_client: AsyncClient, alice_token) -> None:
    response = await test_client.get(
        f"{API}/security/events", params={"limit": 101}, headers=_auth(alice_token)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_history_lists_own_attempts(test_client: AsyncClient, alice_token) -> None:
    await test_client.post(f"{API}/auth/login", json={"email": ALICE, "password": "wrong"})
    await test_client.post(f"{API}/auth/login", json={"email": "bob@example.com", "password": "x"})

    response = await test_client.get(f"{API}/security/login-history", headers=_auth(alice_token))

    assert response.status_code == 200
    history = response.json()
    assert len(history) == 1
    assert history[0]["identity"] == ALICE
    assert history[0]["succeeded"] is False

    response = await test_client.get(
        f"{API}/security/login-history", params={"limit": 51}, headers=_auth(alice_token)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_export_bundles_data_and_records_export(
    test_client: AsyncClient, db_session, alice_token
) -> None:
    await test_client.post(f"{API}/auth/login", json={"email": ALICE, "password": "correct-horse"})

    response = await test_client.post(f"{API}/security/export", headers=_auth(alice_token))

    assert response.status_code == 200
    export = response.json()
    assert export["subject_id"] == "alice-id"
    assert [e["event_type"] for e in export["security_events"]] == ["login_success"]
    assert len(export["login_attempts"]) == 1

    exports = await event_recorder.query_events(
        db_session, "alice-id", event_type=SecurityEventType.DATA_EXPORT
    )
    assert len(exports) == 1
    assert exports[0].event_metadata == {"event_count": 1, "attempt_count": 1}


@pytest.mark.asyncio
async def test_mfa_enroll_returns_factor(test_client: AsyncClient, alice_token) -> None:
    response = await test_client.post(
        f"{API}/auth/mfa/enroll", json={"friendly_name": "phone"}, headers=_auth(alice_token)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["factor_id"] == "factor-1"
    assert body["factor_type"] == "totp"
    assert body["secret"] == "JBSWY3DP"


@pytest.mark.asyncio
async def test_mfa_verify_records_mfa_enabled(
    test_client: AsyncClient, db_session, alice_token
) -> None:
    response = await test_client.post(
        f"{API}/auth/mfa/verify",
        json={"factorId": "factor-1", "code": "123456"},
        headers=_auth(alice_token),
    )

    assert response.status_code == 200
    events = await event_recorder.query_events(
        db_session, "alice-id", event_type=SecurityEventType.MFA_ENABLED
    )
    assert len(events) == 1
    assert events[0].event_metadata["factor_id"] == "factor-1"


@pytest.mark.asyncio
async def test_mfa_verify_wrong_code_is_400(test_client: AsyncClient, alice_token) -> None:
    response = await test_client.post(
        f"{API}/auth/mfa/verify",
        json={"factor_id": "factor-1", "code": "000000"},
        headers=_auth(alice_token),
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid verification code"}


@pytest.mark.asyncio
async def test_delete_account_anonymizes_own_events_and_alerts(
    test_client: AsyncClient, db_session, alice_token
) -> None:
    await event_recorder.record_event(
        db_session,
        "alice-id",
        SecurityEventType.LOGIN_FAILURE,
        {"email": ALICE, "reason": "BAD_CREDENTIALS"},
        "1.1.1.1",
        "Mozilla/5.0",
    )
    await event_recorder.record_event(
        db_session, "bob-id", SecurityEventType.LOGIN_FAILURE, {"email": "bob@example.com"}
    )

    with patch.object(event_recorder.alerter, "dispatch") as mock_dispatch:
        response = await test_client.post(
            f"{API}/security/delete-account",
            json={"confirm_password": "correct-horse"},
            headers=_auth(alice_token),
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "anonymized_events": 1}

    failures = await event_recorder.query_events(
        db_session, "alice-id", event_type=SecurityEventType.LOGIN_FAILURE
    )
    assert "email" not in failures[0].event_metadata
    assert failures[0].event_metadata["anonymized"] is True
    assert failures[0].user_agent is None

    bob = await event_recorder.query_events(db_session, "bob-id")
    assert bob[0].event_metadata["email"] == "bob@example.com"

    deletions = await event_recorder.query_events(
        db_session, "alice-id", event_type=SecurityEventType.DATA_DELETION
    )
    assert len(deletions) == 1
    assert deletions[0].event_metadata["rows_affected"] == 1
    mock_dispatch.assert_called_once()
    assert mock_dispatch.call_args.args[0]["event_type"] == "data_deletion"


@pytest.mark.asyncio
async def test_delete_account_without_body_is_accepted(
    test_client: AsyncClient, alice_token
) -> None:
    response = await test_client.post(
        f"{API}/security/delete-account", headers=_auth(alice_token)
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "anonymized_events": 0}


@pytest.mark.asyncio
async def test_delete_account_wrong_password_changes_nothing(
    test_client: AsyncClient, db_session, alice_token
) -> None:
    await event_recorder.record_event(
        db_session, "alice-id", SecurityEventType.LOGIN_FAILURE, {"email": ALICE}
    )

    response = await test_client.post(
        f"{API}/security/delete-account",
        json={"confirm_password": "wrong"},
        headers=_auth(alice_token),
    )

    assert response.status_code == 401
    events = await event_recorder.query_events(db_session, "alice-id")
    assert len(events) == 1
    assert events[0].event_metadata["email"] == ALICE

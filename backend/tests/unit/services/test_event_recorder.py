from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from loginguard.schemas.security_event import (
    LoginFailureMetadata,
    SecurityEventType,
)
from loginguard.services import event_recorder
from loginguard.services.event_recorder import SecurityAlerter


@pytest.mark.parametrize(
    "event_type",
    [
        SecurityEventType.SUSPICIOUS_ACTIVITY,
        SecurityEventType.ACCOUNT_LOCKED,
        SecurityEventType.UNAUTHORIZED_ACCESS,
        SecurityEventType.DATA_DELETION,
    ],
)
def test_critical_event_types(event_type) -> None:
    assert event_recorder.is_critical(event_type) is True


@pytest.mark.parametrize(
    "event_type",
    [
        SecurityEventType.LOGIN_SUCCESS,
        SecurityEventType.LOGIN_FAILURE,
        SecurityEventType.RATE_LIMIT_EXCEEDED,
        SecurityEventType.DATA_EXPORT,
        SecurityEventType.MFA_ENABLED,
    ],
)
def test_non_critical_event_types(event_type) -> None:
    assert event_recorder.is_critical(event_type) is False


def test_sanitize_metadata_redacts_secrets() -> None:
    sanitized = event_recorder.sanitize_metadata(
        SecurityEventType.LOGIN_FAILURE,
        {"email": "a@example.com", "password": "hunter2", "nested": {"api_token": "abc"}},
    )

    assert sanitized["email"] == "a@example.com"
    assert sanitized["password"] == "[REDACTED]"
    assert sanitized["nested"]["api_token"] == "[REDACTED]"


def test_sanitize_metadata_accepts_typed_model() -> None:
    sanitized = event_recorder.sanitize_metadata(
        SecurityEventType.LOGIN_FAILURE,
        LoginFailureMetadata(email="a@example.com", reason="Invalid login credentials"),
    )

    assert sanitized == {"email": "a@example.com", "reason": "Invalid login credentials"}


def test_sanitize_metadata_falls_back_for_malformed_shape() -> None:
    # reasons must be a list of strings for suspicious activity
    sanitized = event_recorder.sanitize_metadata(
        SecurityEventType.SUSPICIOUS_ACTIVITY, {"reasons": {"not": "a list"}}
    )

    assert sanitized["reasons"] == {"not": "a list"}


def test_sanitize_metadata_caps_size() -> None:
    sanitized = event_recorder.sanitize_metadata(
        SecurityEventType.DATA_EXPORT,
        {"blob": "x" * (event_recorder.MAX_METADATA_SIZE + 100), "event_count": 3},
    )

    assert sanitized["_truncated"] is True
    assert "blob" not in sanitized
    assert sanitized["event_count"] == 3


@pytest.mark.asyncio
async def test_record_event_never_raises_on_store_failure() -> None:
    db = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock(side_effect=ConnectionError("database unreachable"))

    result = await event_recorder.record_event(
        db, None, SecurityEventType.LOGIN_FAILURE, {"email": "a@example.com"}, "1.2.3.4", "ua"
    )

    assert result.ok is False
    assert "ConnectionError" in result.error
    db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_record_event_dispatches_alert_for_critical_event() -> None:
    db = AsyncMock()
    db.add = MagicMock()

    with patch.object(event_recorder.alerter, "dispatch") as mock_dispatch:
        result = await event_recorder.record_event(
            db, None, SecurityEventType.ACCOUNT_LOCKED, {"email": "a@example.com"}, "1.2.3.4", None
        )

    assert result.ok is True
    mock_dispatch.assert_called_once()
    payload = mock_dispatch.call_args[0][0]
    assert payload["event_type"] == "account_locked"
    assert payload["origin_ip"] == "1.2.3.4"


@pytest.mark.asyncio
async def test_record_event_no_alert_for_routine_event() -> None:
    db = AsyncMock()
    db.add = MagicMock()

    with patch.object(event_recorder.alerter, "dispatch") as mock_dispatch:
        await event_recorder.record_event(
            db, "subject-1", SecurityEventType.LOGIN_SUCCESS, None, "1.2.3.4", None
        )

    mock_dispatch.assert_not_called()


@pytest.mark.asyncio
async def test_alerter_without_webhook_only_logs(caplog) -> None:
    alerter = SecurityAlerter(webhook_url=None)

    with caplog.at_level("CRITICAL", logger="loginguard.services.event_recorder"):
        delivered = await alerter.send({"event_type": "account_locked"})

    assert delivered is True
    assert "SECURITY ALERT" in caplog.text


@pytest.mark.asyncio
async def test_alerter_webhook_failure_is_swallowed() -> None:
    alerter = SecurityAlerter(webhook_url="https://hooks.example.com/alert")

    mock_client = AsyncMock()
    mock_client.post.side_effect = ConnectionError("boom")
    mock_client_cm = MagicMock()
    mock_client_cm.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client_cm.__aexit__ = AsyncMock(return_value=False)

    with patch("loginguard.services.event_recorder.httpx.AsyncClient", return_value=mock_client_cm):
        delivered = await alerter.send({"event_type": "data_deletion"})

    assert delivered is False


@pytest.mark.asyncio
async def test_alerter_dispatch_runs_in_background() -> None:
    alerter = SecurityAlerter(webhook_url=None)

    with patch.object(alerter, "send", new=AsyncMock(return_value=True)) as mock_send:
        task = alerter.dispatch({"event_type": "suspicious_activity"})
        assert task is not None
        await alerter.drain()

    mock_send.assert_awaited_once()

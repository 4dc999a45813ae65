# backend/tests/unit/core/test_security_logger.py
"""
Unit tests for the fail2ban security logger.
"""

from unittest.mock import patch

from loginguard.core.security_logger import mask_identity, sanitize, security_log


def test_failed_login_logs_correctly():
    """Test that failed_login logs the fail2ban format with a masked email."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.failed_login("192.168.1.100", "alice@example.com", "BAD_CREDENTIALS")

        mock_info.assert_called_once()
        call_args = mock_info.call_args[0][0]

        assert call_args.startswith("FAILED_LOGIN]")
        assert "ip=192.168.1.100" in call_args
        assert "email=ali***@example.com" in call_args
        assert "reason=BAD_CREDENTIALS" in call_args
        assert "alice@" not in call_args


def test_failed_login_sanitizes_inputs():
    """Newlines and brackets cannot forge extra log entries."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.failed_login(
            "1.2.3.4\n2026-01-01 00:00:00 SECURITY [FAILED_LOGIN] ip=6.6.6.6",
            "x@example.com",
            "<script>",
        )

        call_args = mock_info.call_args[0][0]
        assert "\n" not in call_args
        assert "[FAILED_LOGIN]" not in call_args
        assert "<script>" not in call_args


def test_account_locked_logs_failure_count():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.account_locked("1.2.3.4", "bob@example.com", 5)

        call_args = mock_info.call_args[0][0]
        assert call_args.startswith("ACCOUNT_LOCKED]")
        assert "failures=5" in call_args


def test_rate_limited_logs_endpoint():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.rate_limited("1.2.3.4", "/api/v1/auth/login")

        call_args = mock_info.call_args[0][0]
        assert "RATE_LIMIT]" in call_args
        assert "endpoint=/api/v1/auth/login" in call_args


def test_suspicious_activity_logs_reason():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.suspicious_activity("5.5.5.5", "Login from new IP address")

        call_args = mock_info.call_args[0][0]
        assert "SUSPICIOUS]" in call_args
        assert "reason=Login from new IP address" in call_args


def test_sanitize_handles_empty_and_long_values():
    assert sanitize(None) == "unknown"
    assert sanitize("") == "unknown"
    assert len(sanitize("a" * 1000)) == 255


def test_mask_identity_short_local_part():
    assert mask_identity("ab@example.com") == "a***@example.com"
    assert mask_identity("not-an-email") == "not-an-email"

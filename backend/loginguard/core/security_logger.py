# backend/loginguard/core/security_logger.py
"""
Dedicated security logger for fail2ban integration.

Writes one line per security occurrence in a format that fail2ban can parse.
Includes log injection safeguards and proper timestamp formatting.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from loginguard.core.config import settings


def sanitize(value: str | None, max_length: int = 255) -> str:
    """
    Sanitize user input to prevent log injection attacks.

    Removes characters that could break log parsing or inject fake entries.

    Args:
        value: The value to sanitize
        max_length: Maximum length of the output

    Returns:
        Sanitized string safe for logging
    """
    if not value:
        return "unknown"

    value = str(value).strip()

    # Newlines, carriage returns, brackets and control characters
    value = re.sub(r"[\n\r\[\]<>\x00-\x1f\x7f-\x9f]", "", value)

    return value[:max_length]


def mask_identity(identity: str | None) -> str:
    """
    Mask an email-like identity for privacy while keeping it recognisable.

    Keeps the first 3 chars of the local part and the domain.
    """
    if not identity or "@" not in identity:
        return sanitize(identity)

    local, domain = identity.rsplit("@", 1)
    if len(local) > 3:
        masked_local = local[:3] + "***"
    else:
        masked_local = local[0] + "***" if local else "***"

    return f"{sanitize(masked_local)}@{sanitize(domain)}"


class SecurityLogger:
    """
    Security event logger for fail2ban integration.

    Log format compatible with fail2ban datepattern:
        2026-01-05 10:15:30 SECURITY [EVENT_TYPE] ip=x.x.x.x field=value ...

    All user-controlled fields are sanitized to prevent log injection.
    """

    _instance = None
    _initialized = False

    def __new__(cls, log_path: str | None = None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, log_path: str | None = None):
        if SecurityLogger._initialized:
            return

        self.logger = logging.getLogger("security")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

        if log_path:
            path = Path(log_path)
            path.parent.mkdir(parents=True, exist_ok=True)

            # 50MB max, keep 10 backups
            handler: logging.Handler = RotatingFileHandler(
                str(path),
                maxBytes=50 * 1024 * 1024,
                backupCount=10,
            )
            # The message carries "EVENT_TYPE] ip=... fields..."
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s SECURITY [%(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
        else:
            handler = logging.NullHandler()

        self.logger.addHandler(handler)
        SecurityLogger._initialized = True

    def failed_login(self, ip: str, identity: str, reason: str) -> None:
        """
        Log a failed login attempt.

        Args:
            ip: Client IP address
            identity: Identity (email) that was attempted
            reason: Failure reason (BAD_CREDENTIALS, INTERNAL_ERROR, ...)
        """
        self.logger.info(
            f"FAILED_LOGIN] ip={sanitize(ip)} email={mask_identity(identity)} reason={sanitize(reason)}"
        )

    def successful_login(self, ip: str, identity: str) -> None:
        """Log a successful login (audit trail, not for banning)."""
        self.logger.info(f"LOGIN_SUCCESS] ip={sanitize(ip)} email={mask_identity(identity)}")

    def account_locked(self, ip: str, identity: str, failures: int) -> None:
        """Log a login rejected because the (identity, ip) pair is locked."""
        self.logger.info(
            f"ACCOUNT_LOCKED] ip={sanitize(ip)} email={mask_identity(identity)} failures={int(failures)}"
        )

    def rate_limited(self, ip: str, endpoint: str) -> None:
        """
        Log a rate limit violation.

        Args:
            ip: Client IP address
            endpoint: The endpoint that was rate limited
        """
        self.logger.info(
            f"RATE_LIMIT] ip={sanitize(ip)} endpoint={sanitize(endpoint, max_length=100)}"
        )

    def suspicious_activity(self, ip: str, reason: str) -> None:
        """Log an advisory suspicious-activity flag."""
        self.logger.info(f"SUSPICIOUS] ip={sanitize(ip)} reason={sanitize(reason)}")


# Singleton instance for easy import
security_log = SecurityLogger(settings.SECURITY_LOG_PATH)

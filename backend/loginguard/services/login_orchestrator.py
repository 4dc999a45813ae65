# backend/loginguard/services/login_orchestrator.py
"""
Login orchestration.

One login attempt runs through:
    RATE_CHECK -> LOCKOUT_CHECK -> PROVIDER_AUTH -> RECORD_OUTCOME -> EVENT_LOG

Only the identity provider decides success. Ledger and event writes are
best-effort: a failed write is logged and the login still completes.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from loginguard.core.config import settings
from loginguard.core.rate_limit import AuthRateGuard, get_real_client_ip
from loginguard.core.request_context import get_request_context, truncate_user_agent
from loginguard.core.security_logger import security_log
from loginguard.schemas.security_event import (
    AccountLockedMetadata,
    LoginFailureMetadata,
    LoginSuccessMetadata,
    RateLimitMetadata,
    SecurityEventType,
    SuspiciousActivityMetadata,
)
from loginguard.services import (
    attempt_ledger,
    event_recorder,
    lockout_policy,
    suspicious_activity,
)
from loginguard.services.identity_provider import IdentityProvider, IdentityProviderTimeout
from loginguard.services.write_result import WriteResult

logger = logging.getLogger(__name__)


class LoginOutcome(str, Enum):
    SUCCESS = "success"
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    LOCKED = "locked"
    INTERNAL_ERROR = "internal_error"


class LoginResult(NamedTuple):
    outcome: LoginOutcome
    subject_id: str | None = None
    session: dict[str, Any] | None = None
    message: str | None = None
    correlation_id: str | None = None
    suspicious_reasons: tuple[str, ...] = ()
    retry_after: int | None = None


def _log_write_failure(what: str, result: WriteResult) -> None:
    if not result.ok:
        logger.warning(f"{what} not stored: {result.error}")


class LoginOrchestrator:
    """Sequences rate limiting, lockout, provider auth and recording for one login."""

    def __init__(
        self,
        rate_guard: AuthRateGuard,
        identity_provider: IdentityProvider,
        provider_timeout: float | None = None,
    ):
        self.rate_guard = rate_guard
        self.identity_provider = identity_provider
        self.provider_timeout = provider_timeout or settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS

    async def authenticate(
        self,
        db: AsyncSession,
        request: Request,
        identity: str,
        credential: str,
    ) -> LoginResult:
        identity = attempt_ledger.normalize_identity(identity)
        ctx = get_request_context()
        origin_ip = ctx.ip_address if ctx else get_real_client_ip(request)
        user_agent = ctx.user_agent if ctx else truncate_user_agent(request.headers.get("User-Agent"))
        correlation_id = ctx.request_id if ctx else None

        try:
            return await self._run(
                db, request, identity, credential, origin_ip, user_agent, correlation_id, ctx
            )
        except Exception as e:
            return await self._internal_error(
                db, identity, origin_ip, user_agent, correlation_id, e
            )

    async def _run(
        self, db, request, identity, credential, origin_ip, user_agent, correlation_id, ctx
    ) -> LoginResult:
        # RATE_CHECK
        decision = await self.rate_guard.protect(request)
        if decision.denied:
            security_log.rate_limited(origin_ip, request.url.path)
            _log_write_failure(
                "Rate limit event",
                await event_recorder.record_event(
                    db,
                    None,
                    SecurityEventType.RATE_LIMIT_EXCEEDED,
                    RateLimitMetadata(endpoint=request.url.path, limit=settings.AUTH_RATE_LIMIT),
                    origin_ip=origin_ip,
                    user_agent=user_agent,
                ),
            )
            return LoginResult(LoginOutcome.RATE_LIMITED, retry_after=decision.retry_after)

        # LOCKOUT_CHECK
        try:
            lockout = await lockout_policy.evaluate(db, identity, origin_ip)
        except Exception as e:
            if settings.LOCKOUT_FAIL_CLOSED:
                raise
            logger.error(
                f"Lockout check failed for {identity} from {origin_ip}, failing open: {e}",
                exc_info=True,
            )
            await attempt_ledger.safe_rollback(db)
            lockout = None

        if lockout is not None and lockout.locked:
            security_log.account_locked(origin_ip, identity, lockout.failures)
            _log_write_failure(
                "Account locked event",
                await event_recorder.record_event(
                    db,
                    None,
                    SecurityEventType.ACCOUNT_LOCKED,
                    AccountLockedMetadata(email=identity, failures=lockout.failures),
                    origin_ip=origin_ip,
                    user_agent=user_agent,
                ),
            )
            return LoginResult(
                LoginOutcome.LOCKED,
                message=lockout.message,
                retry_after=int(lockout_policy.WINDOW.total_seconds()),
            )

        # PROVIDER_AUTH; any exception here is an internal error without a verdict
        sign_in = await asyncio.wait_for(
            self.identity_provider.sign_in(identity, credential),
            timeout=self.provider_timeout,
        )

        # RECORD_OUTCOME
        recorded = await asyncio.shield(
            attempt_ledger.record_attempt(
                db, identity, origin_ip, user_agent, succeeded=sign_in.ok
            )
        )
        _log_write_failure("Login attempt", recorded)

        if not sign_in.ok:
            security_log.failed_login(origin_ip, identity, "BAD_CREDENTIALS")
            _log_write_failure(
                "Login failure event",
                await event_recorder.record_event(
                    db,
                    None,
                    SecurityEventType.LOGIN_FAILURE,
                    LoginFailureMetadata(email=identity, reason=sign_in.failure_reason),
                    origin_ip=origin_ip,
                    user_agent=user_agent,
                ),
            )
            reasons = await self._flag_ip_fanout(db, origin_ip, user_agent)
            return LoginResult(LoginOutcome.INVALID_CREDENTIALS, suspicious_reasons=reasons)

        return await self._on_success(db, identity, origin_ip, user_agent, sign_in, ctx)

    async def _internal_error(
        self, db, identity, origin_ip, user_agent, correlation_id, error: Exception
    ) -> LoginResult:
        """Record LOGIN_FAILURE with a null subject and hide the cause from the caller."""
        if isinstance(error, (asyncio.TimeoutError, IdentityProviderTimeout)):
            reason = "PROVIDER_TIMEOUT"
        else:
            reason = "INTERNAL_ERROR"
        logger.error(
            f"Login error for {identity} (request {correlation_id}): "
            f"{type(error).__name__}: {error}",
            exc_info=error,
        )
        await attempt_ledger.safe_rollback(db)
        security_log.failed_login(origin_ip, identity, reason)
        _log_write_failure(
            "Login failure event",
            await event_recorder.record_event(
                db,
                None,
                SecurityEventType.LOGIN_FAILURE,
                LoginFailureMetadata(
                    email=identity,
                    reason=reason,
                    error=type(error).__name__,
                    correlation_id=correlation_id,
                ),
                origin_ip=origin_ip,
                user_agent=user_agent,
            ),
        )
        return LoginResult(LoginOutcome.INTERNAL_ERROR, correlation_id=correlation_id)

    async def _flag_ip_fanout(self, db, origin_ip, user_agent) -> tuple[str, ...]:
        """IP-centric check after a failed attempt; no subject is known yet."""
        try:
            reason = await suspicious_activity.check_ip_fanout(db, origin_ip)
        except Exception as e:
            logger.error(f"IP fan-out check failed for {origin_ip}: {e}")
            await attempt_ledger.safe_rollback(db)
            return ()
        if not reason:
            return ()

        security_log.suspicious_activity(origin_ip, reason)
        _log_write_failure(
            "Suspicious activity event",
            await event_recorder.record_event(
                db,
                None,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                SuspiciousActivityMetadata(reasons=[reason], scope="ip"),
                origin_ip=origin_ip,
                user_agent=user_agent,
            ),
        )
        return (reason,)

    async def _on_success(self, db, identity, origin_ip, user_agent, sign_in, ctx) -> LoginResult:
        subject_id = sign_in.subject_id
        _log_write_failure(
            "Failure-count reset", await attempt_ledger.clear_failures(db, identity, origin_ip)
        )

        # Assessed before the success event is stored so the current IP is not yet "known".
        try:
            suspicion = await suspicious_activity.assess_login(db, subject_id, origin_ip)
        except Exception as e:
            logger.error(f"Suspicious activity check failed for {subject_id}: {e}")
            await attempt_ledger.safe_rollback(db)
            suspicion = suspicious_activity.SuspicionResult(False, [])

        security_log.successful_login(origin_ip, identity)
        _log_write_failure(
            "Login success event",
            await event_recorder.record_event(
                db,
                subject_id,
                SecurityEventType.LOGIN_SUCCESS,
                LoginSuccessMetadata(
                    mfa_used=sign_in.mfa_used, country=ctx.country_code if ctx else None
                ),
                origin_ip=origin_ip,
                user_agent=user_agent,
            ),
        )

        if suspicion.suspicious:
            for reason in suspicion.reasons:
                security_log.suspicious_activity(origin_ip, reason)
            _log_write_failure(
                "Suspicious activity event",
                await event_recorder.record_event(
                    db,
                    subject_id,
                    SecurityEventType.SUSPICIOUS_ACTIVITY,
                    SuspiciousActivityMetadata(
                        reasons=suspicion.reasons, email=identity, scope="subject"
                    ),
                    origin_ip=origin_ip,
                    user_agent=user_agent,
                ),
            )

        return LoginResult(
            LoginOutcome.SUCCESS,
            subject_id=subject_id,
            session=sign_in.session,
            suspicious_reasons=tuple(suspicion.reasons),
        )

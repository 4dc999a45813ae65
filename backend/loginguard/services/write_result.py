# backend/loginguard/services/write_result.py
from typing import Any, NamedTuple


class WriteResult(NamedTuple):
    """
    Outcome of a best-effort store write.

    Ledger and event writes never raise into the login flow; callers get an
    explicit result and decide whether to ignore a failure.
    """

    ok: bool
    value: Any = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any = None) -> "WriteResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: BaseException | str) -> "WriteResult":
        message = str(error)
        if isinstance(error, BaseException):
            message = f"{type(error).__name__}: {message}" if message else type(error).__name__
        return cls(ok=False, error=message)

"""Success/failure container shared by every fallible operation.

Each operation returns exactly one of ``Success(data)`` or
``Failure(code, message, context, suggestions)``. Failures carry a code from
the closed ``ErrorCode`` taxonomy plus remediation suggestions that callers
are expected to surface verbatim.

Narrow with ``is_success`` / ``is_failure`` rather than inspecting fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Generic, Mapping, Tuple, TypeGuard, TypeVar, Union


T = TypeVar("T")
U = TypeVar("U")


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    TOO_MANY_INPUTS = "TOO_MANY_INPUTS"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    ORACLE_NOT_SETTLED = "ORACLE_NOT_SETTLED"
    POLICY_MISMATCH = "POLICY_MISMATCH"
    ACCOUNTING_ERROR = "ACCOUNTING_ERROR"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"


DEFAULT_SUGGESTIONS: Dict[ErrorCode, Tuple[str, ...]] = {
    ErrorCode.INVALID_INPUT: (
        "Check the request fields against the protocol limits",
        "Correct the reported field and submit again",
    ),
    ErrorCode.INSUFFICIENT_FUNDS: (
        "Add more funds to your wallet",
        "Reduce the amount of the operation",
    ),
    ErrorCode.TOO_MANY_INPUTS: (
        "Consolidate small outputs into fewer, larger ones",
        "Split the operation into several smaller transactions",
    ),
    ErrorCode.GAME_NOT_FOUND: (
        "Check if the game has been finalized by the oracle",
        "Verify the game id and pot address",
    ),
    ErrorCode.ORACLE_NOT_SETTLED: (
        "Wait for the oracle to publish the game result",
        "Retry the redemption once the result is settled",
    ),
    ErrorCode.POLICY_MISMATCH: (
        "Verify the bet policy id configured for this game",
        "Contact support: the oracle record does not match the bet tokens",
    ),
    ErrorCode.ACCOUNTING_ERROR: (
        "Do not submit this transaction",
        "Contact support if the issue persists",
    ),
    ErrorCode.TRANSACTION_FAILED: (
        "Check your wallet balance",
        "Verify network connectivity",
        "Try the operation again",
    ),
    ErrorCode.NETWORK_ERROR: (
        "Check your internet connection",
        "Try again in a few moments",
    ),
}


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    code: ErrorCode
    message: str
    context: Mapping[str, Any] = field(default_factory=dict)
    suggestions: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return False

    def with_context(self, **extra: Any) -> "Failure":
        """Return a copy with ``extra`` merged over the existing context."""
        merged = dict(self.context)
        merged.update(extra)
        return replace(self, context=merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "context": dict(self.context),
            "suggestions": list(self.suggestions),
        }


Result = Union[Success[T], Failure]


def success(data: T) -> Success[T]:
    return Success(data)


def failure(
    code: ErrorCode,
    message: str,
    context: Mapping[str, Any] | None = None,
    suggestions: Tuple[str, ...] | list[str] | None = None,
) -> Failure:
    """Build a failure, filling in the default suggestions for ``code``."""
    tips = tuple(suggestions) if suggestions else DEFAULT_SUGGESTIONS.get(code, ())
    return Failure(code=code, message=message, context=dict(context or {}), suggestions=tips)


def from_exception(
    exc: BaseException,
    code: ErrorCode,
    context: Mapping[str, Any] | None = None,
    prefix: str | None = None,
) -> Failure:
    message = str(exc) or exc.__class__.__name__
    if prefix:
        message = f"{prefix}: {message}"
    ctx = dict(context or {})
    ctx.setdefault("exception", exc.__class__.__name__)
    return failure(code, message, ctx)


def is_success(result: "Result[T]") -> TypeGuard[Success[T]]:
    return isinstance(result, Success)


def is_failure(result: "Result[Any]") -> TypeGuard[Failure]:
    return isinstance(result, Failure)


def map_result(result: "Result[T]", fn: Callable[[T], U]) -> "Result[U]":
    if isinstance(result, Success):
        return Success(fn(result.data))
    return result


def unwrap(result: "Result[T]") -> T:
    """Return the data of a success; raise ``ResultError`` on a failure."""
    if isinstance(result, Success):
        return result.data
    raise ResultError(result)


class ResultError(Exception):
    """Raised by ``unwrap`` when the result is a failure."""

    def __init__(self, failure: Failure):
        super().__init__(f"{failure.code.value}: {failure.message}")
        self.failure = failure


__all__ = [
    "ErrorCode",
    "DEFAULT_SUGGESTIONS",
    "Success",
    "Failure",
    "Result",
    "success",
    "failure",
    "from_exception",
    "is_success",
    "is_failure",
    "map_result",
    "unwrap",
    "ResultError",
]

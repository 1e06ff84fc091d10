from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, TypeVar

from ..errors import UserNotFoundError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Result attributes that mean "let the request through"
_PERMIT_FLAGS = ("allowed", "has_credits", "success")


class FailurePolicy(str, Enum):
    """
    What a gate answers when it cannot be evaluated.

    Signup admission fails OPEN (email verification is the secondary control);
    anything that spends or grants value fails CLOSED.
    """

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


SIGNUP_ADMISSION_POLICY = FailurePolicy.FAIL_OPEN
SPENDING_POLICY = FailurePolicy.FAIL_CLOSED


def permits(result: Any) -> bool:
    for flag in _PERMIT_FLAGS:
        if hasattr(result, flag):
            return bool(getattr(result, flag))
    raise TypeError(f"{type(result).__name__} has no permit flag")


async def run_gate(
    name: str,
    check: Awaitable[T],
    *,
    policy: FailurePolicy,
    fallback: T,
) -> T:
    """
    Await `check`; if it raises, log and return `fallback`.

    `fallback` must agree with `policy`: a FAIL_OPEN gate falls back to a
    permitting result, a FAIL_CLOSED gate to a refusing one. A mismatch is a
    programming error and raises TypeError before the check runs.

    Only this package's `ValidationError` and `UserNotFoundError` propagate.
    Everything else, including decode errors from malformed rows, counts as
    an infrastructure failure and gets the fallback.
    """
    if permits(fallback) != (policy is FailurePolicy.FAIL_OPEN):
        if hasattr(check, "close"):
            check.close()  # type: ignore[attr-defined]
        raise TypeError(f"gate {name}: fallback does not match {policy.value}")

    try:
        return await check
    except (ValidationError, UserNotFoundError):
        raise
    except Exception:
        logger.exception("Gate %s failed; applying %s", name, policy.value)
        return fallback

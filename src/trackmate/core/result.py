# src/trackmate/core/result.py

"""
Uniform outcome values.

- Result: Success(value) | Error(failure, is_retriable), returned by the repository
  and by every wrapped store/remote call.
- ErrorType: Transient(cause) | Permanent(cause), computed by the classifiers.
- SyncResult: SyncSuccess | SyncError(error_type), returned by single-item sync attempts.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Error:
    failure: BaseException
    is_retriable: bool = False


Result = Success[T] | Error


@dataclass(frozen=True, slots=True)
class Transient:
    cause: BaseException


@dataclass(frozen=True, slots=True)
class Permanent:
    cause: BaseException


ErrorType = Transient | Permanent


@dataclass(frozen=True, slots=True)
class SyncSuccess:
    pass


@dataclass(frozen=True, slots=True)
class SyncError:
    error_type: ErrorType

    @property
    def is_transient(self) -> bool:
        return isinstance(self.error_type, Transient)


SyncResult = SyncSuccess | SyncError

SYNC_OK = SyncSuccess()


async def safe_call(
    block: Callable[[], Awaitable[T]],
    *,
    is_retriable_when: Callable[[BaseException], bool] | None = None,
    on_error_return: Callable[[], T] | None = None,
) -> Success[T] | Error:
    """
    Await block() and map its outcome to a Result.

    - on_error_return: a failure becomes Success(on_error_return()) instead of Error
    - is_retriable_when: marks the Error retriable when it returns True for the failure

    Cancellation is not a failure and propagates.
    """
    try:
        return Success(await block())
    except Exception as e:
        if on_error_return is not None:
            logger.debug("safe_call falling back to default value", exc_info=True)
            return Success(on_error_return())
        retriable = bool(is_retriable_when and is_retriable_when(e))
        return Error(e, is_retriable=retriable)


def to_sync_result(result: Success | Error) -> SyncResult:
    if isinstance(result, Success):
        return SYNC_OK
    if result.is_retriable:
        return SyncError(Transient(result.failure))
    return SyncError(Permanent(result.failure))

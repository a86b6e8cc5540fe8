"""
Reliability utilities for store access.

Every data store call made by the admission core runs under a timeout,
and connection-level failures are reported as TransientIOError so callers
can tell "try again" apart from "your trip is invalid".
"""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, PendingRollbackError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_db_error(exc: BaseException) -> bool:
    """True for errors that say nothing about the data, only the connection."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


async def guard_io(awaitable: Awaitable[T], operation: str, timeout: float = None) -> T:
    """
    Await a store operation under a timeout.

    A session whose connection dropped earlier refuses further work with
    PendingRollbackError until it is rolled back; that is reported as
    transient too.

    Raises:
        TransientIOError: on timeout or a connection-level database error
    """
    timeout = timeout if timeout is not None else settings.db_operation_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Store operation timed out", extra={"operation": operation, "timeout_s": timeout})
        raise TransientIOError(operation, f"timed out after {timeout}s")
    except PendingRollbackError as exc:
        logger.warning("Store session needs rollback", extra={"operation": operation})
        raise TransientIOError(operation, "session invalidated") from exc
    except DBAPIError as exc:
        if is_transient_db_error(exc):
            logger.warning("Store connection failure", extra={"operation": operation})
            raise TransientIOError(operation, type(exc.orig).__name__ if exc.orig else None) from exc
        raise


def _session_of(args, kwargs) -> Optional[AsyncSession]:
    if isinstance(kwargs.get("db"), AsyncSession):
        return kwargs["db"]
    return next((arg for arg in args if isinstance(arg, AsyncSession)), None)


def retry_transient(attempts: int = 3, base_delay: float = 0.2, max_delay: float = 2.0):
    """
    Retry an async unit of work on TransientIOError with exponential backoff.

    The session passed to the callable (first AsyncSession argument, or
    db=) is rolled back before each retry so the next attempt starts on a
    fresh connection. Only decorate callables that own their whole unit of
    work: anything pending in that session is discarded.

    Validation failures and conflicts are never retried.

    Usage:
        @retry_transient(attempts=3)
        async def fetch(db):
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            delay = base_delay
            for attempt in range(1, attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except TransientIOError:
                    if attempt == attempts:
                        raise
                    logger.info(
                        "Retrying after transient store error",
                        extra={"function": func.__name__, "attempt": attempt, "delay_s": delay},
                    )
                    session = _session_of(args, kwargs)
                    if session is not None:
                        await session.rollback()
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, max_delay)
        return wrapper
    return decorator

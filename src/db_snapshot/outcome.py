"""Value-or-error results for per-table steps.

Table-level operations (page fetches, deletes, inserts) return ``Ok`` or
``Err`` instead of raising, so a run can keep going after a failure and the
final report is built from the collected values.

Usage:
    from db_snapshot.outcome import Err, Ok, capture

    result = await capture(adapter.delete_all("orders"), "orders")
    if isinstance(result, Err):
        errors.append(result.error)
"""

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful step carrying its value."""

    value: T


@dataclass(frozen=True)
class Err:
    """Failed step carrying a human-readable message."""

    error: str


Outcome = Ok[T] | Err


async def capture(awaitable: Awaitable[T], label: str | None = None) -> "Ok[T] | Err":
    """Await *awaitable* and wrap its result or exception.

    Args:
        awaitable: The coroutine to run.
        label: Optional prefix for the error message (usually a table name).

    Returns:
        ``Ok(value)`` on success, ``Err("<label>: <message>")`` on failure.
    """
    try:
        return Ok(await awaitable)
    except Exception as e:
        message = str(e) or type(e).__name__
        return Err(f"{label}: {message}" if label else message)

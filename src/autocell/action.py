"""Actions and transactions — batched state mutations.

Wrapping mutations in an @action, ``with transaction()`` or ``atomically(fn)``
defers every binding delivery until the outermost scope exits. Bindings see
the final state once instead of each intermediate one.

All of these act on the process-wide scheduler (see set_scheduler).
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import Any, Callable, Iterator, ParamSpec, TypeVar

from autocell.scheduler import Scheduler, get_scheduler

P = ParamSpec("P")
R = TypeVar("R")


def action(fn: Callable[P, R]) -> Callable[P, R]:
    """Decorator: batch all cell mutations inside fn.

    Bindings only fire after fn returns, not during.

    Usage:
        counter_a = Cell(0)
        counter_b = Cell(0)

        @action
        def swap():
            a, b = counter_a.get(), counter_b.get()
            counter_a.set(b)
            counter_b.set(a)
            # bindings see both changes at once, not one at a time
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        with get_scheduler().transaction():
            return fn(*args, **kwargs)

    return wrapper


@contextmanager
def transaction() -> Iterator[Scheduler]:
    """Context manager for batching mutations.

    Usage:
        with transaction():
            counter_a.set(1)
            counter_b.set(2)
            # bindings fire here, after both are set
    """
    with get_scheduler().transaction() as scheduler:
        yield scheduler


def atomically(fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
    """Run fn in a transaction and return its result.

    Usage:
        atomically(lambda: (a.set(10), b.set(20)))
    """
    return get_scheduler().atomically(fn, *args, **kwargs)


def flush_all() -> None:
    """Deliver all outstanding batched work now."""
    get_scheduler().flush_all()

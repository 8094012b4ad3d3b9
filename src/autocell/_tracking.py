"""Dependency tracking engine — the heart of autocell.

Uses contextvars to record which observables are read while a Derived value
evaluates its function, building the dependency graph automatically.

Propagation: every ``fire()`` runs inside ``propagating()``. A scheduler that
receives bindings while a propagation is in flight is only settled once the
outermost propagation unwinds, so no binding is delivered against a graph
that is still being marked stale.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from autocell.errors import CallbackError

if TYPE_CHECKING:
    from autocell.observable import Observable
    from autocell.scheduler import Scheduler


class Frame:
    """Reads collected while one derivation evaluates."""

    __slots__ = ("owner", "dependencies")

    def __init__(self, owner: object) -> None:
        self.owner = owner
        # Ordered set keyed by identity: observable -> None
        self.dependencies: dict[Observable, None] = {}


# The frame of the derivation currently evaluating.
# When set, any Observable.get() call registers itself in it.
current_frame: contextvars.ContextVar[Frame | None] = contextvars.ContextVar(
    "current_frame", default=None
)

# Depth of nested fire() calls.
_propagation_depth: int = 0

# Schedulers that received work during a propagation, awaiting settle.
_unsettled: dict[Scheduler, None] = {}


def track(observable: Observable) -> None:
    """Record a read in the active frame. No-op outside a derivation."""
    frame = current_frame.get()
    if frame is not None:
        frame.dependencies[observable] = None


@contextmanager
def tracking(owner: object) -> Iterator[Frame]:
    """Push a fresh frame for ``owner``; popped even if evaluation raises."""
    frame = Frame(owner)
    token = current_frame.set(frame)
    try:
        yield frame
    finally:
        current_frame.reset(token)


@contextmanager
def untracked() -> Iterator[None]:
    """Read observables without making them dependencies.

    Usage:
        total = derive(lambda: price.get() * untracked_qty())

        def untracked_qty():
            with untracked():
                return qty.get()
    """
    token = current_frame.set(None)
    try:
        yield
    finally:
        current_frame.reset(token)


@contextmanager
def propagating() -> Iterator[None]:
    """Scope of one fire(). Settles waiting schedulers when the outermost exits."""
    global _propagation_depth
    _propagation_depth += 1
    try:
        yield
    finally:
        _propagation_depth -= 1
        if _propagation_depth == 0:
            _settle_all()


def request_settle(scheduler: Scheduler) -> None:
    """Settle the scheduler now, or once the outermost propagation unwinds."""
    if _propagation_depth > 0:
        _unsettled[scheduler] = None
    else:
        scheduler._settle()


def _settle_all() -> None:
    # Every scheduler settles even if an earlier one raised; callback failures
    # from all of them are reported together.
    errors: list[Exception] = []
    while _unsettled:
        scheduler = next(iter(_unsettled))
        del _unsettled[scheduler]
        try:
            scheduler._settle()
        except Exception as exc:
            errors.append(exc)
    if not errors:
        return
    failures = [exc for exc in errors if isinstance(exc, CallbackError)]
    if len(failures) == len(errors) and len(failures) > 1:
        combined = [pair for exc in failures for pair in exc.failures]
        raise CallbackError(combined) from combined[0][1]
    raise errors[0]

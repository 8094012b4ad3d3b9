"""Derived values — state computed from other observables.

A Derived wraps a function. When evaluated, it tracks which observables the
function reads and caches the result. When any of them changes, the cached
value is marked stale and the news travels on to the Derived's own listeners,
but nothing is recomputed. On the next read it re-evaluates and re-subscribes
to exactly what that evaluation read.

Derived values are lazy — they only recompute when read.
"""

from __future__ import annotations

from typing import Callable, TypeVar, overload

from autocell._tracking import tracking
from autocell.comparators import Comparator
from autocell.errors import CyclicDependencyError
from autocell.observable import Observable

T = TypeVar("T")

_UNSET = object()


class Derived(Observable[T]):
    """A derived value that auto-tracks dependencies and caches the result."""

    __slots__ = ("_fn", "_dependencies", "_stale", "_failed", "_computing")

    def __init__(self, fn: Callable[[], T], comparator: Comparator | None = None) -> None:
        super().__init__(_UNSET, comparator)
        self._fn = fn
        self._dependencies: dict[Observable, None] = {}
        self._stale = True
        self._failed = False
        self._computing = False

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def dependencies(self) -> tuple[Observable, ...]:
        """Observables this value is subscribed to."""
        return tuple(self._dependencies)

    def invalidate(self) -> None:
        """Force a recompute on next read, even though no dependency changed."""
        self._invalidate()

    def _current(self) -> T:
        if self._computing:
            raise CyclicDependencyError(f"{self!r} read itself while recomputing")
        if self._stale:
            self._recompute()
        return self._value

    def _recompute(self) -> None:
        """Re-evaluate the function, then swap in the new dependency set."""
        self._computing = True
        frame = None
        try:
            with tracking(self) as frame:
                value = self._fn()
        except BaseException:
            # The reader that saw this error went back to valid, so the next
            # invalidation has to reach it again. That includes changes to
            # whatever was read before the failure.
            self._failed = True
            self._computing = False
            if frame is not None:
                reads = {**self._dependencies, **frame.dependencies}
                reads.pop(self, None)
                self._swap_dependencies(reads)
            raise
        self._computing = False
        self._failed = False

        changed = self._value is _UNSET or not self._comparator(self._value, value)
        self._swap_dependencies(frame.dependencies)
        if changed:
            self._value = value
            self._version += 1
        self._stale = False

        # Listeners were told at invalidation time; this only reaches any that
        # went valid again since (e.g. after dispose()).
        if changed and self._listeners:
            self.fire()

    def _swap_dependencies(self, new: dict[Observable, None]) -> None:
        old = self._dependencies
        hot = [dep for dep in new if dep not in old and dep._attach(self)]
        cold = [dep for dep in old if dep not in new and dep._detach(self)]
        self._dependencies = new
        # Hooks run only once the graph is whole again.
        for dep in hot:
            dep._on_observed(True)
        for dep in cold:
            dep._on_observed(False)

    def _invalidate(self) -> None:
        """Called by fire() when a dependency changed.

        Mark stale and propagate to our own listeners. An already stale value
        has told its listeners once and stays quiet, unless its last
        evaluation failed.
        """
        if self._stale and not self._failed:
            return
        self._stale = True
        self._failed = False
        self.fire()

    def dispose(self) -> None:
        """Disconnect from all dependencies. The next read starts from scratch."""
        self._swap_dependencies({})
        self._stale = True
        self._value = _UNSET

    def __repr__(self) -> str:
        name = getattr(self._fn, "__name__", repr(self._fn))
        state = "stale" if self._stale else f"cached={self._value!r}"
        return f"Derived({name}, {state})"


@overload
def derive(fn: Callable[[], T], comparator: Comparator | None = None) -> Derived[T]: ...


@overload
def derive(
    fn: None = None, comparator: Comparator | None = None
) -> Callable[[Callable[[], T]], Derived[T]]: ...


def derive(fn=None, comparator=None):
    """Decorator/factory to create a Derived from a function.

    Usage:
        counter = Cell(0)

        @derive
        def doubled():
            return counter.get() * 2

        doubled.get()  # 0
        counter.set(5)
        doubled.get()  # 10

        parity = derive(lambda: counter.get() % 2, comparator=identical)
    """
    if fn is None:
        return lambda f: Derived(f, comparator)
    return Derived(fn, comparator)

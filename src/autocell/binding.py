"""Bindings — subscriptions that deliver values to a callback.

A Binding watches one Observable. When the Observable (or anything it is
derived from) fires, the Binding turns INVALID and its scheduler takes it.
On flush the scheduler pulls the current value, and the callback runs only if
the Binding's own comparator says the value differs from the last delivered.

Two conveniences build on it:
- autorun(fn): runs fn immediately, re-runs when any observable it read changes.
- reaction(data_fn, effect_fn): calls effect_fn with the new result of data_fn
  only when that result changes.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from autocell.comparators import Comparator, never_equal
from autocell.derived import Derived
from autocell.observable import new_id
from autocell.scheduler import Mode, get_scheduler

if TYPE_CHECKING:
    from autocell.observable import Observable
    from autocell.scheduler import Scheduler

T = TypeVar("T")


class Status(enum.Enum):
    VALID = "valid"  # delivered value matches the target
    INVALID = "invalid"  # a dependency fired, delivery owed
    DISPOSED = "disposed"  # cancelled, terminal


class Binding(Generic[T]):
    """A live subscription of a callback to one Observable.

    Created by ``Observable.bind``; call ``cancel()`` to stop it.
    """

    __slots__ = (
        "_id",
        "_target",
        "_callback",
        "_comparator",
        "_mode",
        "_scheduler",
        "_status",
        "_delivered",
        "_seen_version",
        "__weakref__",
    )

    def __init__(
        self,
        target: Observable[T],
        callback: Callable[[T], Any],
        comparator: Comparator | None = None,
        mode: Mode | None = None,
        *,
        deferred: bool = False,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._id = new_id()
        self._target = target
        self._callback = callback
        self._comparator = comparator if comparator is not None else target.comparator
        self._scheduler = scheduler if scheduler is not None else get_scheduler()
        self._mode = mode if mode is not None else self._scheduler.default_mode

        # Read before attaching so the first computation of a Derived target
        # cannot invalidate us.
        value = target.peek()
        self._delivered = value
        self._seen_version = target.version
        self._status = Status.VALID
        if target._attach(self):
            target._on_observed(True)

        if not deferred:
            try:
                callback(value)
            except BaseException:
                self.cancel()
                raise

    @property
    def status(self) -> Status:
        return self._status

    @property
    def disposed(self) -> bool:
        return self._status is Status.DISPOSED

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def target(self) -> Observable[T] | None:
        return self._target

    @property
    def value(self) -> T | None:
        """The value most recently delivered (or the baseline for deferred)."""
        return self._delivered

    def _invalidate(self) -> None:
        """Called by fire(): VALID -> INVALID, hand over to the scheduler."""
        if self._status is Status.VALID:
            self._status = Status.INVALID
            self._scheduler.schedule(self)

    def _deliver(self) -> None:
        """Called by the scheduler: INVALID -> VALID, maybe run the callback."""
        if self._status is not Status.INVALID:
            return
        try:
            value = self._target.peek()
        finally:
            self._status = Status.VALID
        target = self._target
        # Same object, invalidated since we last looked: mutated in place, and
        # the filter cannot tell.
        mutated = (
            value is self._delivered and target._invalidated_at > self._seen_version
        )
        self._seen_version = target.version
        if not mutated and self._comparator(self._delivered, value):
            return
        self._delivered = value
        self._callback(value)

    def _abandon(self) -> None:
        """Drop owed work without delivering; later fires re-invalidate."""
        if self._status is Status.INVALID:
            self._status = Status.VALID

    def cancel(self) -> None:
        """Stop this binding. Safe to call more than once."""
        if self._status is Status.DISPOSED:
            return
        self._status = Status.DISPOSED
        self._scheduler.discard(self)
        target = self._target
        self._target = None
        self._callback = None
        self._delivered = None
        if target._detach(self):
            target._on_observed(False)

    def __repr__(self) -> str:
        return f"Binding(#{self._id}, {self._status.value}, {self._mode.value})"


class Reaction:
    """Handle returned by autorun() and reaction(). ``cancel()`` stops it."""

    __slots__ = ("_derived", "_binding")

    def __init__(self, derived: Derived, binding: Binding) -> None:
        self._derived = derived
        self._binding = binding

    @property
    def disposed(self) -> bool:
        return self._binding.disposed

    def cancel(self) -> None:
        if self._binding.disposed:
            return
        self._binding.cancel()
        self._derived.dispose()

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "active"
        return f"Reaction({self._derived!r}, {state})"


def autorun(fn: Callable[[], Any], mode: Mode | None = None) -> Reaction:
    """Run fn immediately, then re-run whenever any observable it reads changes.

    Returns a Reaction (call .cancel() to stop).

    Usage:
        counter = Cell(0)
        log = []

        r = autorun(lambda: log.append(counter.get()))
        # log == [0] — ran immediately

        counter.set(1)
        # log == [0, 1] — re-ran because counter changed

        r.cancel()
        counter.set(2)
        # log == [0, 1] — stopped
    """
    # never_equal makes every recompute count as a change, so the binding's
    # peek() re-runs fn on each delivery.
    derived = Derived(fn, never_equal)
    binding = derived.bind(_ignore, never_equal, mode, deferred=True)
    return Reaction(derived, binding)


def reaction(
    data_fn: Callable[[], T],
    effect_fn: Callable[[T], Any],
    *,
    fire_immediately: bool = False,
    comparator: Comparator | None = None,
    mode: Mode | None = None,
) -> Reaction:
    """Track data_fn's observables; call effect_fn when the result changes.

    Unlike autorun, effect_fn only fires when data_fn's *return value* changes,
    not on every dependency notification.

    Usage:
        first = Cell("Alice")
        last = Cell("Smith")

        effects = []
        r = reaction(
            lambda: f"{first.get()} {last.get()}",
            lambda name: effects.append(name),
        )
        # effects == [] — data_fn ran to establish deps, effect waits

        first.set("Bob")
        # effects == ["Bob Smith"]

        r.cancel()
    """
    derived = Derived(data_fn, comparator)
    binding = derived.bind(effect_fn, comparator, mode, deferred=not fire_immediately)
    return Reaction(derived, binding)


def _ignore(value: Any) -> None:
    pass

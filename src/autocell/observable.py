"""Observable values — state that tracks its readers.

When an Observable is read inside a Derived evaluation, the dependency is
registered automatically. When a Cell changes, every listener is invalidated:
derived values are marked stale, bindings are handed to their scheduler.

Thread safety: the graph belongs to one thread. Call set_marshal() once from
that thread; after that any Cell.set() from a background thread is handed to
the marshal instead of running in place. Owner-thread sets stay synchronous.
"""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from autocell._tracking import propagating, track
from autocell.comparators import Comparator, Guard, equals

if TYPE_CHECKING:
    from autocell.binding import Binding
    from autocell.scheduler import Mode, Scheduler

T = TypeVar("T")

# ID generation: itertools.count is atomic under the GIL
_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


# ─── Auto-marshal ────────────────────────────────────────────────────────────
_marshal = None
_owner_thread = None


def set_marshal(marshal: Callable[[Callable[[], None]], Any] | None) -> None:
    """Set the callable that carries cross-thread Cell.set() calls home.

    Call once from the thread that owns the graph:
        autocell.set_marshal(app.call_from_thread)

    After this, any Cell.set() from another thread is passed to ``marshal``
    as a zero-argument callable. Pass None to turn marshaling off.
    """
    global _marshal, _owner_thread
    _marshal = marshal
    _owner_thread = threading.current_thread() if marshal is not None else None


class Invalidatable:
    """A set of listeners plus ``fire``.

    Listeners are Derived values and Bindings; both expose ``_invalidate()``.
    """

    __slots__ = ("_id", "_listeners", "__weakref__")

    def __init__(self) -> None:
        self._id = new_id()
        # Ordered set: listener -> None
        self._listeners: dict[Any, None] = {}

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self) -> None:
        """Invalidate every listener registered right now."""
        with propagating():
            for listener in list(self._listeners):
                # A listener detached by an earlier one in this loop is skipped.
                if listener in self._listeners:
                    listener._invalidate()

    def _attach(self, listener: Any) -> bool:
        """Add a listener. True when this was the 0 -> 1 transition."""
        if listener in self._listeners:
            return False
        self._listeners[listener] = None
        return len(self._listeners) == 1

    def _detach(self, listener: Any) -> bool:
        """Remove a listener. True when this was the 1 -> 0 transition."""
        if listener not in self._listeners:
            return False
        del self._listeners[listener]
        return not self._listeners

    def _on_observed(self, observed: bool) -> None:
        """Called after the listener count moves 0 -> 1 (True) or 1 -> 0 (False)."""


class Observable(Invalidatable, Generic[T]):
    """A read-only reactive value.

    Constructed directly it is a constant; Cell adds ``set`` and Derived
    computes its value from other observables.
    """

    __slots__ = ("_value", "_version", "_comparator", "_invalidated_at")

    def __init__(self, value: T, comparator: Comparator | None = None) -> None:
        super().__init__()
        self._value = value
        self._version = 0
        # Version of the last invalidate(); tells bindings the value may have
        # been mutated in place.
        self._invalidated_at = 0
        self._comparator = comparator if comparator is not None else equals

    @property
    def comparator(self) -> Comparator:
        return self._comparator

    @property
    def version(self) -> int:
        """Bumped every time the stored value changes (or on invalidate())."""
        return self._version

    def get(self) -> T:
        """Read the value. If inside a derivation, registers the dependency."""
        track(self)
        return self._current()

    def peek(self) -> T:
        """Read the value without registering a dependency."""
        return self._current()

    def invalidate(self) -> None:
        """Tell listeners an external condition behind this value changed.

        Also the way to publish an in-place mutation: bindings redeliver the
        same object even though their filter would call it unchanged.
        """
        self._version += 1
        self._invalidated_at = self._version
        self.fire()

    def bind(
        self,
        callback: Callable[[T], Any],
        comparator: Comparator | None = None,
        mode: Mode | None = None,
        *,
        deferred: bool = False,
        scheduler: Scheduler | None = None,
    ) -> Binding[T]:
        """Subscribe ``callback`` to this value. Returns the Binding handle.

        The callback runs right away with the current value unless
        ``deferred`` is set; afterwards it runs whenever a flush finds a value
        that ``comparator`` (default: this observable's comparator) considers
        different from the last one delivered.
        """
        from autocell.binding import Binding

        return Binding(
            self, callback, comparator, mode, deferred=deferred, scheduler=scheduler
        )

    def _current(self) -> T:
        return self._value

    def _store(self, value: T) -> None:
        self._value = value
        self._version += 1
        self.fire()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"


class Cell(Observable[T]):
    """A writable Observable.

    ``guard`` normalizes every value before it is stored; the initial value is
    guarded lazily on first read. ``comparator`` gates ``set``: an equal value
    is dropped without notifying anyone. ``on_hot_cold`` is called with True
    when the first listener arrives and with False when the last one leaves.
    """

    __slots__ = ("_guard", "_guarded", "_on_hot_cold")

    def __init__(
        self,
        value: T,
        comparator: Comparator | None = None,
        guard: Guard | None = None,
        on_hot_cold: Callable[[bool], Any] | None = None,
    ) -> None:
        super().__init__(value, comparator)
        self._guard = guard
        self._guarded = guard is None
        self._on_hot_cold = on_hot_cold

    @property
    def observed(self) -> bool:
        return bool(self._listeners)

    def set(self, value: T) -> None:
        """Write a new value. Auto-marshals from foreign threads."""
        if _marshal is not None and threading.current_thread() != _owner_thread:
            _marshal(lambda v=value: self._set_direct(v))
        else:
            self._set_direct(value)

    def update(self, fn: Callable[[T], T]) -> None:
        """Set the value to ``fn(current)``."""
        self.set(fn(self._current()))

    def _set_direct(self, value: T) -> None:
        if self._guard is not None:
            value = self._guard(value)
        if self._comparator(self._current(), value):
            return
        self._store(value)

    def _current(self) -> T:
        if not self._guarded:
            self._value = self._guard(self._value)
            self._guarded = True
        return self._value

    def _on_observed(self, observed: bool) -> None:
        if self._on_hot_cold is not None:
            self._on_hot_cold(observed)

"""Comparators and guards — the value policy of the graph.

A comparator takes ``(old, new)`` and returns True when the two are equal
enough that the change should be suppressed. Used as a *gate* on a Cell or
Derived it stops the change at the source; used as a *filter* on a Binding it
only silences that one subscriber.

A guard maps a value to the value a Cell actually stores (trim a string,
clamp a number, freeze a list).

Comparators compose with ``both`` / ``either``, guards with ``chain``.
"""

from __future__ import annotations

from typing import Any, Callable

Comparator = Callable[[Any, Any], bool]
Guard = Callable[[Any], Any]


def equals(old: Any, new: Any) -> bool:
    """Default comparator: same object, or ``==``."""
    return old is new or bool(old == new)


def identical(old: Any, new: Any) -> bool:
    return old is new


def always_equal(old: Any, new: Any) -> bool:
    return True


def never_equal(old: Any, new: Any) -> bool:
    return False


def by_key(key: Callable[[Any], Any]) -> Comparator:
    """Compare ``key(old)`` with ``key(new)``.

    Usage:
        user = Cell({"id": 1, "seen": 0}, comparator=by_key(lambda u: u["id"]))
    """

    def _by_key(old: Any, new: Any) -> bool:
        return equals(key(old), key(new))

    return _by_key


def both(*comparators: Comparator) -> Comparator:
    """Equal only when every comparator says equal."""

    def _both(old: Any, new: Any) -> bool:
        return all(c(old, new) for c in comparators)

    return _both


def either(*comparators: Comparator) -> Comparator:
    """Equal when any comparator says equal."""

    def _either(old: Any, new: Any) -> bool:
        return any(c(old, new) for c in comparators)

    return _either


def identity(value: Any) -> Any:
    return value


def chain(*guards: Guard) -> Guard:
    """Apply guards left to right.

    Usage:
        name = Cell("", guard=chain(str.strip, str.lower))
    """

    def _chain(value: Any) -> Any:
        for guard in guards:
            value = guard(value)
        return value

    return _chain

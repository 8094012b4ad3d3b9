"""autocell exception hierarchy."""

from __future__ import annotations


class ReactiveError(Exception):
    """Base class for all autocell errors."""


class CyclicDependencyError(ReactiveError):
    """Raised when the graph cannot settle.

    Either a derivation read itself (directly or through other derived values)
    while it was being recomputed, or flush rounds kept re-invalidating
    bindings past the scheduler's round limit.
    """


class CallbackError(ReactiveError):
    """Raised after a flush in which one or more bindings failed.

    Every other pending binding still ran. ``failures`` holds
    ``(binding, exception)`` pairs in delivery order.
    """

    def __init__(self, failures):
        """Initialize the exception.

        Args:
            failures: list of ``(binding, exception)`` pairs.
        """
        self.failures = list(failures)
        super().__init__(
            f"{len(self.failures)} binding callback(s) failed during flush"
        )

    @property
    def errors(self) -> list[BaseException]:
        """The exceptions alone, in delivery order."""
        return [exc for _, exc in self.failures]

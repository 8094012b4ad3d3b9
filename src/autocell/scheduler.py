"""Scheduler — turns many invalidations into one notification round.

Bindings that go INVALID are collected in the scheduler's pending set. When
they get delivered depends on their mode:

- BATCHED (default): one deferred flush is arranged through ``defer`` once the
  mutation that caused it has finished propagating.
- DIRECT: delivered synchronously, before the mutating call returns.

Inside ``transaction()`` nothing is delivered at all; the outermost exit
flushes everything synchronously.

A flush works in rounds. Each round takes a snapshot of the pending set and
delivers it in insertion order; anything invalidated by those callbacks lands
in the next round of the same flush. A flush that needs more than
``max_rounds`` rounds is treated as a cycle.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator

from autocell._tracking import request_settle
from autocell.errors import CallbackError, CyclicDependencyError, ReactiveError

if TYPE_CHECKING:
    from autocell.binding import Binding

logger = logging.getLogger("autocell.scheduler")

DEFAULT_MAX_ROUNDS = 100


class Mode(enum.Enum):
    BATCHED = "batched"
    DIRECT = "direct"


def call_soon(fn: Callable[[], Any]) -> None:
    """Default deferral: next turn of the running asyncio loop.

    Without a running loop there is no later turn to wait for, so ``fn`` runs
    right away. It is only ever called after propagation has unwound.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        fn()
    else:
        loop.call_soon(fn)


class Scheduler:
    """Collects invalid bindings and decides when they are delivered."""

    def __init__(
        self,
        mode: Mode = Mode.BATCHED,
        *,
        defer: Callable[[Callable[[], Any]], Any] | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
    ) -> None:
        self.default_mode = mode
        self.max_rounds = max_rounds
        self._defer = defer if defer is not None else call_soon
        # Ordered set: binding -> None
        self._pending: dict[Binding, None] = {}
        self._depth = 0
        self._flushing = False
        self._flush_armed = False

    @property
    def depth(self) -> int:
        """Nesting level of open transactions."""
        return self._depth

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def schedule(self, binding: Binding) -> None:
        """Queue an invalid binding. Re-queuing a pending binding is a no-op."""
        if binding in self._pending:
            return
        self._pending[binding] = None
        request_settle(self)

    def discard(self, binding: Binding) -> None:
        self._pending.pop(binding, None)

    # --- Transactions ---

    def begin(self) -> None:
        """Enter a transaction. Nested transactions are depth-counted."""
        self._depth += 1

    def end(self) -> None:
        """Exit a transaction. The outermost exit flushes pending bindings."""
        self._depth -= 1
        if self._depth == 0 and not self._flushing:
            self._drain()

    @contextmanager
    def transaction(self) -> Iterator[Scheduler]:
        """Batch everything inside the block into one flush on exit.

        If the body raised, its exception wins; a failing exit flush is only
        logged.
        """
        self.begin()
        try:
            yield self
        except BaseException:
            try:
                self.end()
            except ReactiveError:
                logger.exception("Flush after a failed transaction also failed")
            raise
        self.end()

    def atomically(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run fn as one transaction and return its result."""
        with self.transaction():
            return fn(*args, **kwargs)

    # --- Flushing ---

    def flush_all(self) -> None:
        """Deliver everything pending now, draining until nothing is left.

        Called from inside a flush it does nothing: the running flush
        already picks up new work in its next round.
        """
        if self._flushing:
            return
        self._drain()

    def _settle(self) -> None:
        """Called once propagation has unwound and this scheduler has work."""
        if self._depth > 0 or self._flushing or not self._pending:
            return
        try:
            if any(binding.mode is Mode.DIRECT for binding in self._pending):
                self._drain(direct_only=True)
        finally:
            if self._pending:
                self._arm()

    def _arm(self) -> None:
        if self._flush_armed:
            return
        self._flush_armed = True
        self._defer(self._deferred_flush)

    def _deferred_flush(self) -> None:
        self._flush_armed = False
        # A transaction still open will flush on exit; a running flush already
        # owns the pending set.
        if self._depth > 0 or self._flushing:
            return
        self._drain()

    def _drain(self, direct_only: bool = False) -> None:
        failures: list[tuple[Binding, Exception]] = []
        self._flushing = True
        try:
            rounds = 0
            while True:
                batch = [
                    binding
                    for binding in self._pending
                    if not direct_only or binding.mode is Mode.DIRECT
                ]
                if not batch:
                    break
                rounds += 1
                if rounds > self.max_rounds:
                    self._abandon(batch)
                    logger.error(
                        "Flush did not settle after %d rounds; dropped %d bindings",
                        self.max_rounds,
                        len(batch),
                    )
                    raise CyclicDependencyError(
                        f"flush did not settle after {self.max_rounds} rounds"
                    )
                for binding in batch:
                    del self._pending[binding]
                logger.debug("Flush round %d: %d bindings", rounds, len(batch))
                self._run_round(batch, failures)
        finally:
            self._flushing = False
        if failures:
            raise CallbackError(failures) from failures[0][1]

    def _run_round(
        self, batch: list[Binding], failures: list[tuple[Binding, Exception]]
    ) -> None:
        for binding in batch:
            try:
                binding._deliver()
            except Exception as exc:
                logger.exception("Binding %r failed during flush", binding)
                failures.append((binding, exc))

    def _abandon(self, batch: list[Binding]) -> None:
        for binding in batch:
            self._pending.pop(binding, None)
            binding._abandon()

    def __repr__(self) -> str:
        return (
            f"Scheduler({self.default_mode.value}, pending={len(self._pending)}, "
            f"depth={self._depth})"
        )


# ─── Process-wide scheduler ──────────────────────────────────────────────────
_scheduler = Scheduler()


def get_scheduler() -> Scheduler:
    """The scheduler new bindings use when none is given."""
    return _scheduler


def set_scheduler(scheduler: Scheduler) -> Scheduler:
    """Install the process-wide scheduler. Returns the previous one.

    Existing bindings keep the scheduler they were created with.
    """
    global _scheduler
    previous = _scheduler
    _scheduler = scheduler
    return previous


def set_default_mode(mode: Mode) -> None:
    """Set the mode used by bindings created without an explicit one."""
    _scheduler.default_mode = mode


def pending_count() -> int:
    """Number of bindings waiting on the process-wide scheduler. Useful for testing."""
    return _scheduler.pending_count

"""Tests for the Scheduler: batched, direct and atomic delivery, flush rounds."""

import asyncio
import logging

import pytest

from autocell import (
    CallbackError,
    Cell,
    CyclicDependencyError,
    Mode,
    Scheduler,
    derive,
    flush_all,
    get_scheduler,
    pending_count,
    set_default_mode,
    transaction,
)


class TestBatched:
    def test_one_deferred_flush_for_many_writes(self, deferred, ticks):
        c = Cell(0)
        log = []
        c.bind(log.append)
        c.set(1)
        c.set(2)
        c.set(3)
        assert log == [0]
        assert len(ticks) == 1
        assert deferred.pending_count == 1
        ticks.pop()()
        assert log == [0, 3]
        assert deferred.pending_count == 0

    def test_many_bindings_share_one_flush(self, deferred, ticks):
        a = Cell(0)
        b = Cell(0)
        log = []
        a.bind(lambda v: log.append(("a", v)), deferred=True)
        b.bind(lambda v: log.append(("b", v)), deferred=True)
        a.set(1)
        b.set(1)
        assert len(ticks) == 1
        ticks.pop()()
        assert log == [("a", 1), ("b", 1)]

    def test_next_tick_with_running_loop(self):
        async def main():
            c = Cell(0)
            log = []
            c.bind(log.append)
            c.set(1)
            c.set(2)
            assert log == [0]
            await asyncio.sleep(0)
            return log

        assert asyncio.run(main()) == [0, 2]

    def test_without_loop_each_mutation_flushes(self):
        c = Cell(0)
        log = []
        c.bind(log.append)
        c.set(1)
        assert log == [0, 1]
        assert pending_count() == 0

    def test_diamond_delivers_consistent_value_once(self):
        a = Cell(1)
        doubled = derive(lambda: a.get() * 2)
        tripled = derive(lambda: a.get() * 3)
        pair = derive(lambda: (doubled.get(), tripled.get()))
        log = []
        pair.bind(log.append)
        a.set(2)
        assert log == [(2, 3), (4, 6)]

    def test_flush_all(self, deferred, ticks):
        c = Cell(0)
        log = []
        c.bind(log.append)
        c.set(5)
        flush_all()
        assert log == [0, 5]
        # The armed flush finds nothing left.
        ticks.pop()()
        assert log == [0, 5]


class TestDirect:
    def test_delivers_before_set_returns(self, deferred, ticks):
        c = Cell(0)
        log = []
        c.bind(log.append, mode=Mode.DIRECT)
        c.set(1)
        assert log == [0, 1]
        assert ticks == []

    def test_diamond_is_glitch_free(self):
        a = Cell(1)
        doubled = derive(lambda: a.get() * 2)
        tripled = derive(lambda: a.get() * 3)
        pair = derive(lambda: (doubled.get(), tripled.get()))
        log = []
        pair.bind(log.append, mode=Mode.DIRECT)
        a.set(2)
        assert log == [(2, 3), (4, 6)]

    def test_set_default_mode(self, deferred, ticks):
        set_default_mode(Mode.DIRECT)
        c = Cell(0)
        log = []
        b = c.bind(log.append)
        assert b.mode is Mode.DIRECT
        c.set(1)
        assert log == [0, 1]
        assert ticks == []

    def test_mixed_modes(self, deferred, ticks):
        c = Cell(0)
        direct_log = []
        batched_log = []
        c.bind(direct_log.append, mode=Mode.DIRECT)
        c.bind(batched_log.append, mode=Mode.BATCHED)
        c.set(1)
        assert direct_log == [0, 1]
        assert batched_log == [0]
        assert len(ticks) == 1
        ticks.pop()()
        assert batched_log == [0, 1]

    def test_explicit_scheduler(self, ticks):
        own = Scheduler(Mode.DIRECT, defer=ticks.append)
        c = Cell(0)
        log = []
        b = c.bind(log.append, scheduler=own)
        assert b.mode is Mode.DIRECT
        c.set(1)
        assert log == [0, 1]
        assert get_scheduler().pending_count == 0


class TestAtomic:
    def test_collapses_writes(self):
        a = Cell(1)
        b = Cell(2)
        total = derive(lambda: a.get() + b.get())
        log = []
        total.bind(log.append)
        with transaction():
            a.set(10)
            b.set(20)
        assert log == [3, 30]

    def test_nested_depth(self, deferred, ticks):
        c = Cell(0)
        log = []
        c.bind(log.append, mode=Mode.DIRECT)
        with deferred.transaction():
            c.set(1)
            with deferred.transaction():
                c.set(2)
                assert deferred.depth == 2
            assert deferred.depth == 1
            assert log == [0]
            c.set(3)
        assert deferred.depth == 0
        assert log == [0, 3]
        assert ticks == []

    def test_flushes_when_body_raises(self):
        c = Cell(0)
        log = []
        c.bind(log.append)
        with pytest.raises(RuntimeError):
            with transaction():
                c.set(1)
                raise RuntimeError("oops")
        assert log == [0, 1]
        assert get_scheduler().depth == 0

    def test_body_error_wins_over_flush_failure(self, caplog):
        c = Cell(0)

        def bad(value):
            raise ValueError("flush")

        c.bind(bad, deferred=True)
        with caplog.at_level(logging.ERROR, logger="autocell.scheduler"):
            with pytest.raises(RuntimeError, match="body"):
                with transaction():
                    c.set(1)
                    raise RuntimeError("body")
        assert "failed transaction also failed" in caplog.text
        assert get_scheduler().depth == 0

    def test_scheduler_atomically(self, deferred, ticks):
        c = Cell(0)
        log = []
        c.bind(log.append)
        result = deferred.atomically(lambda: (c.set(1), c.set(2)) and "done")
        assert result == "done"
        assert log == [0, 2]


class TestRounds:
    def test_cascade_drains_in_same_flush(self, deferred, ticks):
        a = Cell(0)
        b = Cell(0)
        log = []
        a.bind(lambda v: b.set(v * 10))
        b.bind(log.append)
        a.set(1)
        assert len(ticks) == 1
        ticks.pop()()
        assert log == [0, 10]
        assert ticks == []

    def test_round_order(self, deferred, ticks):
        order = []
        a = Cell(0)
        b = Cell(0)
        c = Cell(0)

        def on_a(value):
            order.append(("a", value))
            b.set(value)

        a.bind(on_a, deferred=True)
        b.bind(lambda v: order.append(("b", v)), deferred=True)
        c.bind(lambda v: order.append(("c", v)), deferred=True)
        with deferred.transaction():
            a.set(1)
            c.set(1)
        assert order == [("a", 1), ("c", 1), ("b", 1)]

    def test_unbounded_rounds_raise(self, caplog):
        counter = Cell(0)
        counter.bind(lambda v: counter.set(v + 1), deferred=True)
        with caplog.at_level(logging.ERROR, logger="autocell.scheduler"):
            with pytest.raises(CyclicDependencyError):
                counter.set(1)
        assert "did not settle" in caplog.text
        assert pending_count() == 0

        other = Cell(0)
        log = []
        other.bind(log.append)
        other.set(1)
        assert log == [0, 1]

    def test_max_rounds_is_configurable(self, ticks):
        own = Scheduler(max_rounds=3, defer=ticks.append)
        counter = Cell(0)
        seen = []

        def bump(value):
            seen.append(value)
            counter.set(value + 1)

        counter.bind(bump, deferred=True, scheduler=own)
        counter.set(1)
        with pytest.raises(CyclicDependencyError):
            ticks.pop()()
        assert seen == [1, 2, 3]


class TestCallbackFailures:
    def test_failure_does_not_block_others(self, caplog):
        c = Cell(0)
        good = []

        def bad(value):
            raise ValueError("boom")

        c.bind(bad, deferred=True)
        c.bind(good.append)
        with caplog.at_level(logging.ERROR, logger="autocell.scheduler"):
            with pytest.raises(CallbackError) as info:
                c.set(1)
        assert good == [0, 1]
        assert len(info.value.failures) == 1
        assert isinstance(info.value.errors[0], ValueError)
        assert isinstance(info.value.__cause__, ValueError)
        assert "failed during flush" in caplog.text

    def test_failing_binding_recovers(self):
        c = Cell(0)
        seen = []

        def flaky(value):
            seen.append(value)
            if value == 1:
                raise ValueError("flaky")

        c.bind(flaky)
        with pytest.raises(CallbackError):
            c.set(1)
        c.set(2)
        assert seen == [0, 1, 2]

    def test_derivation_error_reported_and_recovered(self):
        x = Cell(1)
        d = derive(lambda: 10 // x.get())
        log = []
        d.bind(log.append)
        with pytest.raises(CallbackError) as info:
            x.set(0)
        assert isinstance(info.value.errors[0], ZeroDivisionError)
        x.set(5)
        assert log == [10, 2]

    def test_deferred_failures_raise_from_flush(self, deferred, ticks):
        c = Cell(0)

        def bad(value):
            raise KeyError("k")

        c.bind(bad, deferred=True)
        c.set(1)  # nothing delivered yet, nothing raised
        with pytest.raises(CallbackError):
            ticks.pop()()
        assert deferred.pending_count == 0

    def test_failure_on_one_scheduler_does_not_hold_back_another(self):
        first = Scheduler(Mode.DIRECT)
        second = Scheduler(Mode.DIRECT)
        c = Cell(0)
        log = []

        def bad(value):
            raise ValueError("boom")

        c.bind(bad, deferred=True, scheduler=first)
        c.bind(log.append, scheduler=second)
        with pytest.raises(CallbackError):
            c.set(1)
        assert log == [0, 1]
        assert second.pending_count == 0

    def test_failures_on_several_schedulers_are_combined(self):
        first = Scheduler(Mode.DIRECT)
        second = Scheduler(Mode.DIRECT)
        c = Cell(0)

        def bad(value):
            raise ValueError("boom")

        c.bind(bad, deferred=True, scheduler=first)
        c.bind(bad, deferred=True, scheduler=second)
        with pytest.raises(CallbackError) as info:
            c.set(1)
        assert len(info.value.failures) == 2

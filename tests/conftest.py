"""Shared fixtures: every test gets its own process-wide scheduler."""

import pytest

import autocell
from autocell.scheduler import Scheduler


@pytest.fixture(autouse=True)
def scheduler():
    fresh = Scheduler()
    previous = autocell.set_scheduler(fresh)
    yield fresh
    autocell.set_scheduler(previous)
    autocell.set_marshal(None)


@pytest.fixture
def ticks():
    """A deferral queue: scheduled flushes wait here until the test runs them."""
    return []


@pytest.fixture
def deferred(ticks):
    """Install a batched scheduler whose flushes wait in ``ticks``."""
    fresh = Scheduler(defer=ticks.append)
    previous = autocell.set_scheduler(fresh)
    yield fresh
    autocell.set_scheduler(previous)

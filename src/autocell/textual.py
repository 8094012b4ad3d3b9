"""Textual integration for autocell. Opt-in — requires textual.

Guard + NoMatches + thread-marshal are enforced here, not at callsites, and
the Textual coupling stays in this module so the core remains agnostic.
_paused_apps has a single owner (this module): an id is present exactly while
inside a pause() context.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from autocell import autorun as _autorun, reaction as _reaction
from autocell.scheduler import Mode, Scheduler

# Pause state lives here, keyed by id(app).
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded callbacks during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def scheduler_for(app, mode=Mode.BATCHED) -> Scheduler:
    """A Scheduler whose deferred flushes run on the app's message loop.

    Usage:
        autocell.set_scheduler(stx.scheduler_for(app))
        autocell.set_marshal(app.call_from_thread)
    """
    return Scheduler(mode, defer=app.call_later)


def _guard(app, fn):
    """Wrap fn so it only runs when the app is safe, on the app's thread."""
    _main = threading.get_ident()

    def _safe(*args):
        try:
            fn(*args)
        except NoMatches:
            pass

    def _guarded(*args):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, *args)
        else:
            _safe(*args)

    return _guarded


def bind(app, observable, callback, comparator=None, mode=None, *, deferred=False):
    """Observable.bind() that safely bridges to Textual widgets.

    Skips delivery during pause/not-running, catches NoMatches from widget
    queries, and marshals cross-thread calls via call_from_thread.
    """
    return observable.bind(
        _guard(app, callback), comparator, mode, deferred=deferred
    )


def reaction(app, data_fn, effect_fn, *, fire_immediately=False):
    """reaction() that safely bridges to Textual widgets."""
    return _reaction(
        data_fn, _guard(app, effect_fn), fire_immediately=fire_immediately
    )


def autorun(app, fn):
    """autorun() that safely bridges to Textual widgets.

    A run skipped while the app is unsafe reads nothing, so the autorun is
    left without dependencies. Start it once the app is running.
    """
    return _autorun(_guard(app, fn))

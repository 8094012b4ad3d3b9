"""autocell: fine-grained reactive cells with lazy derived values and batched bindings."""

from importlib.metadata import version as _version

__version__ = _version("autocell")

from autocell._tracking import untracked
from autocell.comparators import (
    always_equal,
    both,
    by_key,
    chain,
    either,
    equals,
    identical,
    identity,
    never_equal,
)
from autocell.errors import CallbackError, CyclicDependencyError, ReactiveError
from autocell.observable import Cell, Invalidatable, Observable, set_marshal
from autocell.derived import Derived, derive
from autocell.scheduler import (
    Mode,
    Scheduler,
    get_scheduler,
    pending_count,
    set_default_mode,
    set_scheduler,
)
from autocell.binding import Binding, Reaction, Status, autorun, reaction
from autocell.action import action, atomically, flush_all, transaction
# textual is NOT auto-imported, import autocell.textual explicitly

__all__ = [
    "Invalidatable",
    "Observable",
    "Cell",
    "Derived",
    "derive",
    "Binding",
    "Status",
    "Reaction",
    "autorun",
    "reaction",
    "Mode",
    "Scheduler",
    "get_scheduler",
    "set_scheduler",
    "set_default_mode",
    "pending_count",
    "action",
    "atomically",
    "transaction",
    "flush_all",
    "set_marshal",
    "untracked",
    "equals",
    "identical",
    "always_equal",
    "never_equal",
    "by_key",
    "both",
    "either",
    "identity",
    "chain",
    "ReactiveError",
    "CyclicDependencyError",
    "CallbackError",
]

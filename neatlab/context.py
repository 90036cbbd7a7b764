"""Execution context carrying NEAT options and a cancellation flag."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any


class OptionsNotFoundError(LookupError):
    """Raised when a context holds no NEAT options."""

    def __init__(self, message: str = "NEAT options not found in the context") -> None:
        super().__init__(message)


@dataclass
class NeatContext:
    """Carries the NEAT options of a run and lets it be cancelled."""

    options: Any = None
    _cancelled: threading.Event = field(
        default_factory=threading.Event, init=False, repr=False, compare=False
    )

    def cancel(self) -> None:
        """Ask everything running under this context to stop."""
        self._cancelled.set()

    def cancelled(self) -> bool:
        """Return True once the context has been cancelled."""
        return self._cancelled.is_set()


def new_context(options: Any) -> NeatContext:
    """Return a new context that carries the given options."""
    return NeatContext(options)


def from_context(ctx: Any) -> Any:
    """Return the options stored in the context or raise OptionsNotFoundError."""
    options = getattr(ctx, "options", None)
    if options is None:
        raise OptionsNotFoundError()
    return options
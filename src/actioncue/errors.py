"""Exception types raised by actioncue."""

from __future__ import annotations


class ActionCueError(Exception):
    """Base class for all actioncue errors."""


class StorageError(ActionCueError):
    """The store could not be reached or a write failed. Safe to retry."""


class InvalidQuery(ActionCueError):
    """A filter or sort referenced an unknown column, operator or value."""


class ActionNotFound(ActionCueError, LookupError):
    """No action exists with the given id."""

    def __init__(self, action_id: int) -> None:
        super().__init__(f"Action not found: {action_id}")
        self.action_id = action_id


class UnknownHandler(ActionCueError):
    """An action references a hook with no registered handler."""

    def __init__(self, hook: str) -> None:
        super().__init__(f"No handler registered for hook: {hook}")
        self.hook = hook


class HandlerFailure(ActionCueError):
    """A handler raised while executing an action."""

    def __init__(self, hook: str, cause: BaseException | None = None, message: str | None = None) -> None:
        if message is None:
            message = f"{type(cause).__name__}: {cause}" if cause is not None else "handler failed"
        super().__init__(message)
        self.hook = hook
        self.cause = cause


class HandlerTimeout(HandlerFailure):
    """A handler exceeded its execution budget."""

    def __init__(self, hook: str, timeout: float) -> None:
        super().__init__(hook, message=f"Handler for {hook} exceeded {timeout:g}s budget")
        self.timeout = timeout
        # Set by the Runner when the handler could not be stopped
        self.still_running = False

"""Handler registration: maps hook names to callables."""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable

from actioncue.retry import RetryPolicy


@dataclass
class Handler:
    """A callable registered for one hook."""

    hook: str
    func: Callable[..., Any]
    retry: RetryPolicy | None = None  # None = scheduler default
    timeout: float | None = None  # None = scheduler default

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)


class HandlerRegistry:
    """
    Dispatch table from hook name to handler.

    Everything is validated at registration time so that a bad hook fails
    when the application starts rather than when an action runs.

    Example:
        registry = HandlerRegistry()
        registry.register("send_invoice", send_invoice, retry=5)
        registry.get("send_invoice").func(1234)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(
        self,
        hook: str,
        func: Callable[..., Any],
        *,
        retry: RetryPolicy | int | dict | None = None,
        timeout: float | None = None,
    ) -> Handler:
        if not isinstance(hook, str) or not hook.strip():
            raise ValueError("hook must be a non-empty string")
        if not callable(func):
            raise TypeError(f"Handler for {hook} is not callable: {func!r}")
        if hook in self._handlers:
            raise ValueError(f"Handler already registered for hook: {hook}")
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        handler = Handler(
            hook=hook,
            func=func,
            retry=RetryPolicy.coerce(retry) if retry is not None else None,
            timeout=timeout,
        )
        self._handlers[hook] = handler
        return handler

    def unregister(self, hook: str) -> bool:
        return self._handlers.pop(hook, None) is not None

    def get(self, hook: str) -> Handler | None:
        return self._handlers.get(hook)

    def hooks(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, hook: object) -> bool:
        return hook in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

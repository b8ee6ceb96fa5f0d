"""Scheduler configuration."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field, replace
from typing import Mapping

from actioncue.retry import RetryPolicy


def default_holder() -> str:
    """Identify this worker process, e.g. ``build-01:4242``."""
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class SchedulerConfig:
    """Configuration for an ActionScheduler and its worker loop."""

    db_path: str = ":memory:"
    batch_size: int = 25
    lease_duration: float = 300.0  # Seconds a claim stays valid
    execution_timeout: float | None = 60.0  # Per-action budget, None = unbounded
    poll_interval: float = 1.0
    holder: str = field(default_factory=default_holder)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    seed: int | None = None  # Seeds backoff jitter for reproducible runs

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.lease_duration <= 0:
            raise ValueError(f"lease_duration must be positive, got {self.lease_duration}")
        if self.execution_timeout is not None and self.execution_timeout <= 0:
            raise ValueError(f"execution_timeout must be positive, got {self.execution_timeout}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")

    @classmethod
    def from_env(
        cls,
        prefix: str = "ACTIONCUE_",
        environ: Mapping[str, str] | None = None,
        **overrides,
    ) -> SchedulerConfig:
        """
        Build a config from environment variables.

        Recognized variables (with the default prefix):
            ACTIONCUE_DB_PATH, ACTIONCUE_BATCH_SIZE, ACTIONCUE_LEASE_DURATION,
            ACTIONCUE_EXECUTION_TIMEOUT ("none" disables), ACTIONCUE_POLL_INTERVAL,
            ACTIONCUE_HOLDER, ACTIONCUE_SEED, ACTIONCUE_MAX_ATTEMPTS,
            ACTIONCUE_BACKOFF, ACTIONCUE_BASE_DELAY, ACTIONCUE_MAX_DELAY,
            ACTIONCUE_JITTER

        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(prefix + name)
            return value.strip() if value is not None and value.strip() else None

        def number(name: str, convert):
            raw = get(name)
            if raw is None:
                return None
            try:
                return convert(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {prefix}{name}: {raw!r}") from e

        config = cls()
        values: dict = {}
        if get("DB_PATH"):
            values["db_path"] = get("DB_PATH")
        for name, attr, convert in (
            ("BATCH_SIZE", "batch_size", int),
            ("LEASE_DURATION", "lease_duration", float),
            ("POLL_INTERVAL", "poll_interval", float),
            ("SEED", "seed", int),
        ):
            value = number(name, convert)
            if value is not None:
                values[attr] = value
        timeout = get("EXECUTION_TIMEOUT")
        if timeout is not None:
            values["execution_timeout"] = None if timeout.lower() == "none" else number("EXECUTION_TIMEOUT", float)
        if get("HOLDER"):
            values["holder"] = get("HOLDER")

        retry: dict = {}
        for name, attr, convert in (
            ("MAX_ATTEMPTS", "max_attempts", int),
            ("BASE_DELAY", "base_delay", float),
            ("MAX_DELAY", "max_delay", float),
            ("JITTER", "jitter", float),
        ):
            value = number(name, convert)
            if value is not None:
                retry[attr] = value
        if get("BACKOFF"):
            retry["backoff"] = get("BACKOFF")
        if retry:
            values["retry"] = RetryPolicy.coerce(retry)

        values.update(overrides)
        return replace(config, **values)

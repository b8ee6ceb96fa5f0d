"""Retry policy applied by the Runner when a handler fails."""

from __future__ import annotations

import random
from dataclasses import dataclass, fields
from typing import Any

BACKOFF_KINDS = ("exponential", "linear", "fixed")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to run an action and how long to wait between runs.

    ``max_attempts`` counts every execution, so ``max_attempts=1`` means a
    single try with no retry.
    """

    max_attempts: int = 3
    backoff: str = "exponential"
    base_delay: float = 60.0
    max_delay: float = 3600.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff not in BACKOFF_KINDS:
            raise ValueError(f"Unknown backoff: {self.backoff}. Use one of {', '.join(BACKOFF_KINDS)}.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Delays must be non-negative")
        if not 0 <= self.jitter < 1:
            raise ValueError(f"jitter must be in [0, 1), got {self.jitter}")

    def should_retry(self, attempts: int) -> bool:
        """True if an action that has run ``attempts`` times may run again."""
        return attempts < self.max_attempts

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Seconds to wait before the retry that follows failed ``attempt`` (1-based)."""
        n = max(1, attempt)
        if self.backoff == "exponential":
            base = self.base_delay * (2 ** (n - 1))
        elif self.backoff == "linear":
            base = self.base_delay * n
        else:
            base = self.base_delay
        base = min(base, self.max_delay)

        if self.jitter and base > 0:
            rng = rng or random
            base *= 1 + rng.uniform(-self.jitter, self.jitter)
        return max(0.0, min(base, self.max_delay))

    @classmethod
    def coerce(cls, value: Any, default: RetryPolicy | None = None) -> RetryPolicy:
        """Build a policy from the forms accepted by ``retry=``.

        Accepts an existing policy, an int (max attempts), a dict of fields,
        or None for ``default``.
        """
        if value is None:
            return default or cls()
        if isinstance(value, RetryPolicy):
            return value
        if isinstance(value, bool):
            raise TypeError("retry must be an int, dict or RetryPolicy")
        if isinstance(value, int):
            base = default or cls()
            return cls(
                max_attempts=value,
                backoff=base.backoff,
                base_delay=base.base_delay,
                max_delay=base.max_delay,
                jitter=base.jitter,
            )
        if isinstance(value, dict):
            known = {f.name for f in fields(cls)}
            unknown = set(value) - known
            if unknown:
                raise ValueError(f"Unknown retry options: {', '.join(sorted(unknown))}")
            base = default or cls()
            merged = {f.name: getattr(base, f.name) for f in fields(cls)}
            merged.update(value)
            return cls(**merged)
        raise TypeError("retry must be an int, dict or RetryPolicy")

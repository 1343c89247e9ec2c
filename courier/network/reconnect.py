"""Reconnect policy applied when the backend drops the session."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from courier.config import ReconnectSettings
from courier.models import CloseCause


@dataclass(frozen=True)
class ReconnectDecision:
    retry: bool
    delay: float = 0.0
    reason: Optional[str] = None


class ReconnectPolicy:
    """Bounded retry budget with constant (default) or exponential backoff.

    ``retry_count`` is owned by the session: it counts attempts since the
    last successful open and is reset there, not here.
    """

    def __init__(
        self,
        max_retries: int = 5,
        delay_ms: int = 3000,
        *,
        backoff: str = "constant",
        max_delay_ms: int = 30000,
        jitter: float = 0.0,
    ) -> None:
        if max_retries < 0 or delay_ms < 0:
            raise ValueError("max_retries and delay_ms must be non-negative")
        self.max_retries = int(max_retries)
        self.delay_ms = int(delay_ms)
        self.backoff = backoff
        self.max_delay_ms = int(max_delay_ms)
        self.jitter = float(jitter)

    @classmethod
    def from_settings(cls, settings: ReconnectSettings) -> "ReconnectPolicy":
        return cls(
            settings.max_retries,
            settings.delay_ms,
            backoff=settings.backoff,
            max_delay_ms=settings.max_delay_ms,
            jitter=settings.jitter,
        )

    def evaluate(self, cause: CloseCause, retry_count: int) -> ReconnectDecision:
        if cause is CloseCause.TERMINAL:
            return ReconnectDecision(retry=False, reason="terminal")
        if retry_count >= self.max_retries:
            return ReconnectDecision(retry=False, reason="exhausted")
        return ReconnectDecision(retry=True, delay=self.delay_for(retry_count + 1))

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before reconnect ``attempt`` (1-based)."""

        delay_ms = float(self.delay_ms)
        if self.backoff == "exponential":
            delay_ms = min(float(self.max_delay_ms), delay_ms * (2 ** (attempt - 1)))
        if self.jitter:
            delay_ms *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.0, delay_ms) / 1000.0

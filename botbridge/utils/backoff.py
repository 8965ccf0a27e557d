"""Reconnection Backoff - Delay policy for re-establishing transport sessions.

The default is a fixed delay with no attempt cap. Growth, jitter
and a cap are available behind configuration.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from botbridge.config.constants import BRIDGE


@dataclass
class ReconnectPolicy:
    """Configuration for reconnection behavior.

    Attributes:
        initial_delay_s: Delay before the first attempt
        max_delay_s: Ceiling applied after growth
        backoff_factor: Multiplier per consecutive attempt (1.0 = fixed)
        jitter: Scale each delay by a random factor in [0.5, 1.5)
        max_attempts: Consecutive attempts allowed, 0 for unlimited
    """

    initial_delay_s: float = BRIDGE.RECONNECT_DELAY_S
    max_delay_s: float = BRIDGE.RECONNECT_MAX_DELAY_S
    backoff_factor: float = 1.0
    jitter: bool = False
    max_attempts: int = 0

    @classmethod
    def from_settings(cls, settings) -> ReconnectPolicy:
        """Build a policy from application settings."""
        return cls(
            initial_delay_s=settings.reconnect_delay_s,
            max_delay_s=settings.reconnect_max_delay_s,
            backoff_factor=settings.reconnect_backoff_factor,
            jitter=settings.reconnect_jitter,
            max_attempts=settings.reconnect_max_attempts,
        )

    @property
    def unlimited(self) -> bool:
        """Whether attempts are uncapped."""
        return self.max_attempts <= 0

    def allows(self, attempt: int) -> bool:
        """Whether the 1-based attempt number may be scheduled."""
        return self.unlimited or attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before the 1-based attempt number."""
        delay = self.initial_delay_s * (self.backoff_factor ** max(attempt - 1, 0))
        delay = min(delay, max(self.max_delay_s, self.initial_delay_s))
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

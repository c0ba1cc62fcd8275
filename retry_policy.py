"""
Retry and pacing policy for batch analysis under provider rate limits.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import SchedulerSettings
from errors import AnalysisTimeout, InvalidKey, RateLimited

RATE_LIMIT_MARKERS = ("quota", "limit", "429")


def is_rate_limit_error(err: BaseException) -> bool:
    """Quota / rate limit signal, by type or by message text."""
    if isinstance(err, RateLimited):
        return True
    if isinstance(err, (InvalidKey, AnalysisTimeout)):
        return False
    msg = str(err).lower()
    return any(marker in msg for marker in RATE_LIMIT_MARKERS)


@dataclass
class BackoffPolicy:
    base_delay: float = 5.0
    factor: float = 1.5
    max_delay: float = 60.0
    max_retries: int = 20
    max_total_wait: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: SchedulerSettings):
        return cls(
            base_delay=settings.backoff_base,
            factor=settings.backoff_factor,
            max_delay=settings.backoff_max,
            max_retries=settings.max_retries,
            max_total_wait=settings.max_total_wait,
        )

    def wait_seconds(self, retry: int) -> int:
        """min(max_delay, base * factor^retry), rounded to whole seconds."""
        return int(min(self.max_delay, math.floor(self.base_delay * self.factor ** retry + 0.5)))


class RetryAction(Enum):
    BACKOFF = "backoff"        # wait, then re-attempt the same item
    DOWNGRADE = "downgrade"    # leave turbo pacing, re-attempt immediately
    GIVE_UP = "give_up"        # mark the item failed, move on


@dataclass
class RetryDecision:
    action: RetryAction
    wait: int = 0
    retry: int = 0
    reason: str = ""


class RetryController:
    """
    Consecutive-retry counter and pacing tier for one batch run.

    forced_safe_mode is one-way: once a turbo run hits a rate limit it stays
    on safe pacing until the controller is discarded.
    """

    def __init__(self, policy: BackoffPolicy, turbo: bool = False,
                 turbo_delay: float = 1.0, safe_delay: float = 6.0):
        self.policy = policy
        self.turbo = turbo
        self.turbo_delay = turbo_delay
        self.safe_delay = safe_delay
        self.consecutive_retries = 0
        self.forced_safe_mode = False
        self.item_wait_total = 0.0

    @property
    def is_turbo(self) -> bool:
        return self.turbo and not self.forced_safe_mode

    def pacing_delay(self) -> float:
        """Pause after a successful item."""
        return self.turbo_delay if self.is_turbo else self.safe_delay

    def on_rate_limit(self) -> RetryDecision:
        self.consecutive_retries += 1
        retry = self.consecutive_retries

        if retry > self.policy.max_retries:
            return RetryDecision(RetryAction.GIVE_UP, retry=retry, reason="Max retries exceeded")

        if self.turbo and not self.forced_safe_mode:
            self.forced_safe_mode = True
            self.consecutive_retries = 0
            return RetryDecision(RetryAction.DOWNGRADE, retry=retry)

        wait = self.policy.wait_seconds(retry)
        if self.policy.max_total_wait is not None and self.item_wait_total + wait > self.policy.max_total_wait:
            return RetryDecision(RetryAction.GIVE_UP, retry=retry, reason="Max rate limit wait exceeded")
        self.item_wait_total += wait
        return RetryDecision(RetryAction.BACKOFF, wait=wait, retry=retry)

    def reset(self):
        """Item finished (success, failure or skip)."""
        self.consecutive_retries = 0
        self.item_wait_total = 0.0

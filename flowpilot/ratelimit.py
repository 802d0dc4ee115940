"""
Rate limiting for scheduler actions and agent page interactions.

RateLimiter is a policy object: it answers "may this action class act now"
and "how long until it may". The mutable part (recent action instants per
class) lives in RateLimiterState so a scheduler can own and inject it.

Action classes used by the scheduler:
- dispatch: minimum spacing between two job dispatches
- production:daily: rolling 24h production quota
- distribute:<target>: per-platform posting quota

ActionPacer enforces the minimum delay between two interactions on one page.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

DISPATCH_CLASS = "dispatch"
DAILY_PRODUCTION_CLASS = "production:daily"


def distribution_class(target: str) -> str:
    """Rate limit class for acting on behalf of one distribution target."""
    return f"distribute:{target}"


@dataclass
class RateLimitRule:
    """
    Limits for one action class.

    min_interval: seconds required since the previous action
    max_actions / window: at most max_actions within any rolling window
    """

    min_interval: float = 0.0
    max_actions: Optional[int] = None
    window: float = 0.0


class RateLimiterState:
    """Recent action instants keyed by action class."""

    def __init__(self):
        self._history: Dict[str, Deque[float]] = {}

    def history(self, action_class: str) -> Deque[float]:
        return self._history.setdefault(action_class, deque())

    def last(self, action_class: str) -> Optional[float]:
        history = self._history.get(action_class)
        if not history:
            return None
        return history[-1]

    def clear(self) -> None:
        self._history.clear()


class RateLimiter:
    """
    Minimum-interval and rolling-window limiter.

    Rules are looked up by exact class first, then by "<prefix>:*" so a
    single rule can cover every distribution target.

    wait_time() and record() are synchronous; a caller that checks and then
    records without awaiting in between cannot be raced by another caller on
    the same event loop.
    """

    def __init__(
        self,
        rules: Optional[Dict[str, RateLimitRule]] = None,
        state: Optional[RateLimiterState] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules: Dict[str, RateLimitRule] = dict(rules or {})
        self.state = state or RateLimiterState()
        self._clock = clock

    def set_rule(self, action_class: str, rule: RateLimitRule) -> None:
        self.rules[action_class] = rule

    def rule_for(self, action_class: str) -> RateLimitRule:
        rule = self.rules.get(action_class)
        if rule is None and ":" in action_class:
            prefix = action_class.split(":", 1)[0]
            rule = self.rules.get(f"{prefix}:*")
        return rule or RateLimitRule()

    def _prune(self, action_class: str, rule: RateLimitRule, now: float) -> Deque[float]:
        history = self.state.history(action_class)
        if rule.max_actions and rule.window > 0:
            while history and history[0] <= now - rule.window:
                history.popleft()
        else:
            while len(history) > 1 and history[0] + rule.min_interval <= now:
                history.popleft()
        return history

    def wait_time(self, action_class: str) -> float:
        """Seconds until an action of this class is allowed (0 when allowed now)."""
        rule = self.rule_for(action_class)
        now = self._clock()
        history = self._prune(action_class, rule, now)

        wait = 0.0
        if rule.min_interval > 0 and history:
            wait = max(wait, history[-1] + rule.min_interval - now)
        if rule.max_actions and rule.window > 0 and len(history) >= rule.max_actions:
            wait = max(wait, history[0] + rule.window - now)
        return max(0.0, wait)

    def is_allowed(self, action_class: str) -> bool:
        return self.wait_time(action_class) <= 0

    def record(self, action_class: str) -> float:
        """Record that an action of this class is happening now. Returns its instant."""
        rule = self.rule_for(action_class)
        now = self._clock()
        self._prune(action_class, rule, now).append(now)
        return now

    def refund(self, action_class: str, instant: float) -> None:
        """Forget an action recorded at `instant` that never reached its target."""
        history = self.state.history(action_class)
        try:
            history.remove(instant)
        except ValueError:
            logger.debug(f"Nothing to refund for {action_class} at {instant}")

    def try_acquire(self, action_class: str) -> bool:
        """Check and record in one step. Returns False without recording when gated."""
        if not self.is_allowed(action_class):
            return False
        self.record(action_class)
        return True

    def snapshot(self) -> Dict[str, float]:
        """Current wait time per configured class, for status reporting."""
        return {action_class: round(self.wait_time(action_class), 3) for action_class in self.rules}


class ActionPacer:
    """
    Enforces a minimum delay between consecutive page interactions.

    One pacer belongs to one agent; it is independent of the scheduler's
    job-level limits.
    """

    def __init__(
        self,
        min_delay: float = 0.7,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_delay = min_delay
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None

    async def wait(self) -> None:
        """Wait until the next interaction is allowed, then claim the slot."""
        if self._last is not None and self.min_delay > 0:
            remaining = self._last + self.min_delay - self._clock()
            if remaining > 0:
                await self._sleep(remaining)
        self._last = self._clock()

    def reset(self) -> None:
        self._last = None

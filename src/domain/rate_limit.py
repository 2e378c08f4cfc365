"""
Rate limiter - per-endpoint-class request quotas.

Fixed-window counting: each (endpoint class, identity) pair gets one
counter per window, keyed by the window start. The limiter never raises
for an exhausted quota; it returns a RateDecision and the caller picks
the transport-level response.

The enable switch is a policy object consulted on every call so that
operators (and tests) can flip DISABLE_RATE_LIMIT without a restart.

If the counter backend is unreachable the limiter fails open and logs
a warning.
"""

import logging
import math
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .exceptions import RateStoreUnavailable
from .ports import RateCounterStore

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")


class EndpointClass(str, Enum):
    """Rate-limit classes for the externally reachable steps."""

    REGISTER = "register"
    VERIFY_OTP = "verify_otp"
    RESEND = "resend"
    PAYMENT_INTENT = "payment_intent"
    PAYMENT_CONFIRM = "payment_confirm"


@dataclass(frozen=True)
class RateLimitRule:
    """Quota of `limit` requests per `window_seconds`."""

    limit: int
    window_seconds: int

    @classmethod
    def parse(cls, value: str) -> "RateLimitRule":
        """Parse the "limit/window_seconds" form used in settings."""
        limit, _, window = value.partition("/")
        rule = cls(limit=int(limit), window_seconds=int(window))
        if rule.limit < 1 or rule.window_seconds < 1:
            raise ValueError(f"Invalid rate limit rule: {value!r}")
        return rule


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a limiter check."""

    permitted: bool
    retry_after_seconds: int = 0
    retry_after: str = ""


@dataclass
class RateLimitPolicy:
    """
    Runtime switch for rate limiting.

    `enabled` is the configured default; the environment flag named by
    `disable_env_var` overrides it and is re-read on every call.
    """

    enabled: bool = True
    disable_env_var: str = "DISABLE_RATE_LIMIT"

    def is_enabled(self) -> bool:
        if os.environ.get(self.disable_env_var, "").strip().lower() in _TRUTHY:
            return False
        return self.enabled


def format_retry_after(seconds: int) -> str:
    """Render a retry-after duration for humans ("15 minutes", "42 seconds")."""
    if seconds >= 3600:
        value, unit = math.ceil(seconds / 3600), "hour"
    elif seconds >= 60:
        value, unit = math.ceil(seconds / 60), "minute"
    else:
        value, unit = max(seconds, 1), "second"
    return f"{value} {unit}" + ("" if value == 1 else "s")


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class RateLimiter:
    """Checks and counts requests against per-class quotas."""

    store: RateCounterStore
    rules: Mapping[EndpointClass, RateLimitRule]
    policy: RateLimitPolicy = field(default_factory=RateLimitPolicy)
    clock: Callable[[], datetime] = _utc_now

    def allow(self, endpoint_class: EndpointClass, identity: str) -> RateDecision:
        if not self.policy.is_enabled():
            return RateDecision(permitted=True)

        rule = self.rules[endpoint_class]
        now = self.clock().timestamp()
        window_start = int(now // rule.window_seconds) * rule.window_seconds
        key = f"ratelimit:{endpoint_class.value}:{identity}:{window_start}"

        try:
            count = self.store.increment(key, rule.window_seconds)
        except RateStoreUnavailable as e:
            logger.warning("Rate limit store unavailable, allowing request (%s): %s", endpoint_class.value, e)
            return RateDecision(permitted=True)

        if count <= rule.limit:
            return RateDecision(permitted=True)

        retry_after_seconds = max(math.ceil(window_start + rule.window_seconds - now), 1)
        logger.info(
            "Rate limit exceeded: class=%s identity=%s count=%d limit=%d",
            endpoint_class.value,
            identity,
            count,
            rule.limit,
        )
        return RateDecision(
            permitted=False,
            retry_after_seconds=retry_after_seconds,
            retry_after=format_retry_after(retry_after_seconds),
        )

"""Data models for rate limit decisions."""

from dataclasses import dataclass, field
from enum import Enum


class Algorithm(str, Enum):
    """Windowing algorithm used to count requests."""
    FIXED = "fixed"
    SLIDING = "sliding"


class IdentityKind(str, Enum):
    """What the identity value of a rate limit key represents."""
    EMAIL = "email"
    USER_ID = "user"
    IP = "ip"


@dataclass(frozen=True)
class Decision:
    """Outcome of one atomic rate limit check.

    Attributes:
        allowed: Whether the request may proceed
        retry_after_seconds: Seconds until a retry can succeed (0 if allowed)
        count: Requests counted in the window, including this one if allowed
        fail_open: True when the store was unreachable and the request was
            let through without a check
    """
    allowed: bool
    retry_after_seconds: int = field(default=0)
    count: int = field(default=0)
    fail_open: bool = field(default=False)

    def remaining(self, limit: int) -> int:
        """Requests still allowed in the current window."""
        if not self.allowed:
            return 0
        return max(0, limit - self.count)

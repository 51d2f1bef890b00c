"""Cross-worker coordination primitives."""

from horde_text_bridge.infrastructure.runtime.staggered_poll_scheduler import (
    StaggeredPollScheduler,
)
from horde_text_bridge.infrastructure.runtime.token_rate_throttle import TokenRateThrottle

__all__ = ["StaggeredPollScheduler", "TokenRateThrottle"]

"""EatLocal core -- request-rate limiting and notification delivery.

Top-level convenience re-exports::

    from eatlocal import RateLimiter, QueueProcessor
    from eatlocal.types import Channel, JobStatus
"""

__version__ = "0.1.0"

from eatlocal.core.queue import ProcessResult, QueueProcessor, enqueue
from eatlocal.core.rate_limit import (
    MemoryCounterCache,
    RateLimiter,
    RateLimitResult,
    WindowCounterStore,
)

__all__ = [
    "__version__",
    "MemoryCounterCache",
    "ProcessResult",
    "QueueProcessor",
    "RateLimitResult",
    "RateLimiter",
    "WindowCounterStore",
    "enqueue",
]

"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_SCOPE = "whatsapp"


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding-window admission settings for one rate gate."""

    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RequestLimits:
    """Per-request caps enforced before any work is done."""

    max_batch_size: int = 100
    max_message_length: int = 1600


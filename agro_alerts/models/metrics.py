"""Dispatch metrics dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ChannelMetrics:
    count: int = 0
    sent: int = 0
    failed: int = 0
    timeouts: int = 0
    total_latency_s: float = 0.0
    max_latency_s: float = 0.0
    latencies_s: list[float] = field(default_factory=list)
    last_error: str | None = None
    last_sent_ts: float | None = None

"""Per-channel notification dispatch with bounded latency."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any, Mapping

from . import config
from .channels import ChannelProvider, OutboundMessage, default_providers
from .errors import DispatchError
from .messages import build_email_html, build_email_subject, build_email_text, build_sms
from .models.metrics import ChannelMetrics
from .models.rules import AlertRule, Channel
from .models.triggered import ChannelStatus

logger = logging.getLogger(__name__)

MAX_LATENCY_SAMPLES = 200


def _p95(samples: list[float]) -> float:
    if not samples:
        return 0.0
    ordered = sorted(samples)
    idx = max(0, math.ceil(0.95 * len(ordered)) - 1)
    return ordered[idx]


def render_message(
    channel: Channel, rule: AlertRule, value: float, device_id: str
) -> OutboundMessage:
    if channel == Channel.SMS:
        body = build_sms(rule, value, device_id)
        return OutboundMessage(subject="", body=body)
    return OutboundMessage(
        subject=build_email_subject(rule, value, device_id),
        body=build_email_text(rule, value, device_id),
        html=build_email_html(rule, value, device_id),
    )


class NotificationDispatcher:
    """Send through one provider per channel; always return a status."""

    def __init__(
        self,
        providers: Mapping[Channel, ChannelProvider],
        timeout_s: float | None = None,
        clock=time.monotonic,
    ) -> None:
        self.providers = dict(providers)
        self.timeout_s = float(
            config.DISPATCH_TIMEOUT_S if timeout_s is None else timeout_s
        )
        self._clock = clock
        self.metrics: dict[Channel, ChannelMetrics] = {}

    def metrics_for(self, channel: Channel) -> ChannelMetrics:
        return self.metrics.setdefault(channel, ChannelMetrics())

    def record(self, status: ChannelStatus, timed_out: bool = False) -> None:
        metrics = self.metrics_for(status.channel)
        metrics.count += 1
        if status.ok:
            metrics.sent += 1
            metrics.last_sent_ts = time.time()
        else:
            metrics.failed += 1
            metrics.last_error = status.error
        if timed_out:
            metrics.timeouts += 1
        metrics.total_latency_s += status.latency_s
        metrics.max_latency_s = max(metrics.max_latency_s, status.latency_s)
        metrics.latencies_s.append(status.latency_s)
        if len(metrics.latencies_s) > MAX_LATENCY_SAMPLES:
            metrics.latencies_s.pop(0)

    async def send(
        self,
        channel: Channel,
        destination: str,
        rule: AlertRule,
        observed_value: float,
        device_id: str,
    ) -> ChannelStatus:
        provider = self.providers.get(channel)
        if provider is None:
            status = ChannelStatus.failed(channel, f"No provider for channel {channel.value}")
            logger.error(status.error)
            self.record(status)
            return status

        start = self._clock()
        timed_out = False
        try:
            message = render_message(channel, rule, observed_value, device_id)
            await asyncio.wait_for(
                provider.send(destination, message), timeout=self.timeout_s
            )
            status = ChannelStatus.sent(channel, self._clock() - start)
        except asyncio.TimeoutError:
            timed_out = True
            status = ChannelStatus.failed(
                channel, f"timed out after {self.timeout_s:g}s", self._clock() - start
            )
            logger.warning(
                "%s dispatch to %s timed out (rule %s)", channel.value, destination, rule.id
            )
        except DispatchError as exc:
            status = ChannelStatus.failed(channel, str(exc), self._clock() - start)
            logger.warning(
                "%s dispatch to %s failed (rule %s): %s",
                channel.value,
                destination,
                rule.id,
                exc,
            )
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            status = ChannelStatus.failed(channel, error, self._clock() - start)
            logger.exception(
                "Unexpected %s dispatch error for rule %s", channel.value, rule.id
            )
        self.record(status, timed_out=timed_out)
        return status

    def summary(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for channel in sorted(self.metrics, key=lambda c: c.value):
            entry = self.metrics[channel]
            avg = (entry.total_latency_s / entry.count) if entry.count else 0.0
            out[channel.value] = {
                "count": entry.count,
                "sent": entry.sent,
                "failed": entry.failed,
                "timeouts": entry.timeouts,
                "avg_latency_s": avg,
                "p95_latency_s": _p95(entry.latencies_s),
                "max_latency_s": entry.max_latency_s,
                "last_error": entry.last_error,
                "last_sent_ts": entry.last_sent_ts,
            }
        return out


def build_default_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(default_providers())

"""Triggered alert (audit record) dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .rules import Channel, Parameter

ORIGIN_AUTO = "auto"
ORIGIN_TEST = "test"


class SendState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class ChannelStatus:
    channel: Channel
    state: SendState
    error: str | None = None
    latency_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.state == SendState.SENT

    @classmethod
    def sent(cls, channel: Channel, latency_s: float = 0.0) -> "ChannelStatus":
        return cls(channel=channel, state=SendState.SENT, latency_s=latency_s)

    @classmethod
    def failed(
        cls, channel: Channel, error: str, latency_s: float = 0.0
    ) -> "ChannelStatus":
        return cls(
            channel=channel, state=SendState.FAILED, error=error, latency_s=latency_s
        )


def pending_status(channel: Channel) -> dict[str, dict[str, str | None]]:
    return {channel.value: {"state": SendState.PENDING.value, "error": None}}


@dataclass(frozen=True)
class TriggeredAlert:
    id: str
    user_id: str
    rule_id: str
    parameter: Parameter
    comparison: str
    threshold: float
    actual_value: float
    device_id: str
    channel: Channel
    destination: str
    critical: bool
    origin: str
    created_at: float
    send_status: dict[str, dict[str, str | None]] = field(default_factory=dict)
    seen: bool = False
    status_updated: bool = False
    aborted: bool = False

    def __post_init__(self) -> None:
        if not self.send_status:
            object.__setattr__(self, "send_status", pending_status(self.channel))

    def with_status(
        self, statuses: list[ChannelStatus], aborted: bool = False
    ) -> "TriggeredAlert":
        merged = {k: dict(v) for k, v in self.send_status.items()}
        for status in statuses:
            merged[status.channel.value] = {
                "state": status.state.value,
                "error": status.error,
            }
        return replace(self, send_status=merged, status_updated=True, aborted=aborted)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "alertId": self.rule_id,
            "parameter": self.parameter.value,
            "comparison": self.comparison,
            "threshold": self.threshold,
            "actualValue": self.actual_value,
            "deviceId": self.device_id,
            "type": self.channel.value,
            "contactValue": self.destination,
            "critical": self.critical,
            "triggerType": self.origin,
            "createdAt": self.created_at,
            "sendStatus": self.send_status,
            "seen": self.seen,
            "statusUpdated": self.status_updated,
            "aborted": self.aborted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriggeredAlert":
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            rule_id=str(data["alertId"]),
            parameter=Parameter(data["parameter"]),
            comparison=str(data["comparison"]),
            threshold=float(data["threshold"]),
            actual_value=float(data["actualValue"]),
            device_id=str(data["deviceId"]),
            channel=Channel(data["type"]),
            destination=str(data["contactValue"]),
            critical=bool(data.get("critical", False)),
            origin=str(data.get("triggerType") or ORIGIN_AUTO),
            created_at=float(data["createdAt"]),
            send_status={k: dict(v) for k, v in (data.get("sendStatus") or {}).items()},
            seen=bool(data.get("seen", False)),
            status_updated=bool(data.get("statusUpdated", False)),
            aborted=bool(data.get("aborted", False)),
        )

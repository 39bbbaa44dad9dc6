"""Suppression key/state/decision dataclasses."""

from __future__ import annotations

from dataclasses import dataclass

from .rules import Parameter

DEBOUNCED = "debounced"
COOLDOWN = "cooldown"
STORE_UNAVAILABLE = "store-unavailable"


@dataclass(frozen=True)
class SuppressionKey:
    user_id: str
    rule_id: str
    parameter: Parameter

    def as_string(self) -> str:
        return f"{self.user_id}|{self.rule_id}|{self.parameter.value}"

    @classmethod
    def from_string(cls, raw: str) -> "SuppressionKey":
        user_id, rule_id, parameter = raw.split("|", 2)
        return cls(user_id=user_id, rule_id=rule_id, parameter=Parameter(parameter))


@dataclass
class SuppressionState:
    last_debounce_at: float | None = None
    last_cooldown_at: float | None = None

    def to_dict(self) -> dict[str, float | None]:
        return {
            "last_debounce_at": self.last_debounce_at,
            "last_cooldown_at": self.last_cooldown_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SuppressionState":
        return cls(
            last_debounce_at=data.get("last_debounce_at"),
            last_cooldown_at=data.get("last_cooldown_at"),
        )


@dataclass(frozen=True)
class SuppressionDecision:
    allowed: bool
    reason: str | None = None
    retry_after_s: float | None = None

    @classmethod
    def allow(cls) -> "SuppressionDecision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls, reason: str, retry_after_s: float | None = None
    ) -> "SuppressionDecision":
        return cls(allowed=False, reason=reason, retry_after_s=retry_after_s)

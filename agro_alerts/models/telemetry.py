"""Telemetry sample dataclass."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TelemetrySample:
    device_id: str
    values: dict[str, Any]
    received_at: float = field(default_factory=time.time)

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def gas(self, key: str) -> Any:
        gases = self.values.get("gases")
        if isinstance(gases, dict):
            return gases.get(key)
        return None

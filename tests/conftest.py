"""Shared test fixtures and dummy classes."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from agro_alerts.dispatcher import NotificationDispatcher
from agro_alerts.engine import AlertEngine
from agro_alerts.errors import DispatchError
from agro_alerts.models.rules import Channel
from agro_alerts.stores import (
    InMemoryDeviceRegistry,
    InMemoryHistoryStore,
    InMemoryRuleStore,
)
from agro_alerts.suppression import MemoryStateBackend, SuppressionStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DummyProvider:
    """Channel provider that records sends and optionally fails."""

    def __init__(
        self,
        channel: Channel,
        error: str | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.channel = channel
        self.error = error
        self.delay_s = delay_s
        self.sent: list[tuple[str, Any]] = []

    async def send(self, destination: str, message: Any) -> None:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error:
            raise DispatchError(self.channel.value, self.error)
        self.sent.append((destination, message))


class FailingHistoryStore(InMemoryHistoryStore):
    """History store whose selected operations raise."""

    def __init__(self, fail_append: bool = False, fail_query: bool = False) -> None:
        super().__init__()
        self.fail_append = fail_append
        self.fail_query = fail_query

    async def append(self, alert):
        if self.fail_append:
            raise ConnectionError("history store offline")
        return await super().append(alert)

    async def query(self, user_id, rule_id, created_after):
        if self.fail_query:
            raise ConnectionError("history store offline")
        return await super().query(user_id, rule_id, created_after)


class BrokenBackend(MemoryStateBackend):
    """Suppression backend that can fail reads or writes."""

    def __init__(self, fail_load: bool = False, fail_save: bool = False) -> None:
        super().__init__()
        self.fail_load = fail_load
        self.fail_save = fail_save

    def load(self, key: str):
        if self.fail_load:
            raise OSError("state backend unavailable")
        return super().load(key)

    def save(self, key: str, data: dict) -> None:
        if self.fail_save:
            raise OSError("state backend unavailable")
        super().save(key, data)


class DummyResponse:
    """Dummy HTTP response for testing."""

    def __init__(self, data: object, status: int = 200, text: str = "") -> None:
        self._data = data
        self.status_code = status
        self.text = text or str(data)
        self.ok = 200 <= status < 300

    def json(self) -> object:
        return self._data


def soil_rule(
    rule_id: str = "r1",
    comparison: str = "<",
    threshold: float = 30,
    channel: str = "sms",
    destination: str = "+94771234567",
    **extra: Any,
) -> dict[str, Any]:
    doc = {
        "id": rule_id,
        "parameter": "soilMoisturePct",
        "comparison": comparison,
        "threshold": threshold,
        "type": channel,
        "value": destination,
    }
    doc.update(extra)
    return doc


class EngineHarness:
    """Engine wired to in-memory collaborators and dummy providers."""

    def __init__(self, clock: FakeClock | None = None, history=None, backend=None) -> None:
        self.clock = clock or FakeClock()
        self.registry = InMemoryDeviceRegistry()
        self.rules = InMemoryRuleStore()
        self.history = history if history is not None else InMemoryHistoryStore()
        self.sms = DummyProvider(Channel.SMS)
        self.email = DummyProvider(Channel.EMAIL)
        self.dispatcher = NotificationDispatcher(
            {Channel.SMS: self.sms, Channel.EMAIL: self.email}, timeout_s=0.5
        )
        self.store = SuppressionStore(
            backend=backend if backend is not None else MemoryStateBackend(),
            history=self.history,
            debounce_s=60,
            cooldown_s=7200,
            soil_moisture_cooldown_s=7200,
            persisted_cooldown_all=True,
            clock=self.clock,
        )
        self.engine = AlertEngine(
            self.registry,
            self.rules,
            self.history,
            store=self.store,
            dispatcher=self.dispatcher,
            clock=self.clock,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def harness(clock: FakeClock) -> EngineHarness:
    return EngineHarness(clock)

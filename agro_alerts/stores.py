"""Collaborator contracts and in-memory implementations.

The engine only talks to these through the small async protocols below; the
real device registry, rule store and history store live outside this package.
The in-memory classes back the CLI and the tests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol

from . import config
from .models.rules import AlertRule, parse_flag
from .models.triggered import TriggeredAlert

logger = logging.getLogger(__name__)


class DeviceRegistry(Protocol):
    async def owner_of(self, device_id: str) -> str | None: ...

    async def shared_users_of(self, device_id: str) -> list[str]: ...


class RuleStore(Protocol):
    async def active_rules_for(
        self, user_id: str
    ) -> Iterable[AlertRule | Mapping[str, Any]]: ...

    async def get_rule(
        self, user_id: str, rule_id: str
    ) -> AlertRule | Mapping[str, Any] | None: ...


class HistoryStore(Protocol):
    async def append(self, alert: TriggeredAlert) -> str: ...

    async def get(self, user_id: str, alert_id: str) -> TriggeredAlert | None: ...

    async def replace(self, alert: TriggeredAlert) -> None: ...

    async def query(
        self, user_id: str, rule_id: str, created_after: float
    ) -> list[TriggeredAlert]: ...

    async def recent(self, user_id: str, limit: int = 50) -> list[TriggeredAlert]: ...

    async def purge_older_than(self, cutoff: float) -> int: ...


async def authorized_users(registry: DeviceRegistry, device_id: str) -> list[str]:
    """Owner first, then shared users, de-duplicated. Unknown device -> []."""
    owner = await registry.owner_of(device_id)
    if not owner:
        return []
    users = [owner]
    for user_id in await registry.shared_users_of(device_id) or []:
        if user_id and user_id not in users:
            users.append(user_id)
    return users


@dataclass
class DeviceRecord:
    owner_id: str
    shared_with: list[str] = field(default_factory=list)


class InMemoryDeviceRegistry:
    def __init__(self, devices: dict[str, DeviceRecord] | None = None) -> None:
        self._devices: dict[str, DeviceRecord] = dict(devices or {})

    def add_device(
        self, device_id: str, owner_id: str, shared_with: Iterable[str] = ()
    ) -> None:
        self._devices[device_id] = DeviceRecord(owner_id, list(shared_with))

    async def owner_of(self, device_id: str) -> str | None:
        record = self._devices.get(device_id)
        return record.owner_id if record else None

    async def shared_users_of(self, device_id: str) -> list[str]:
        record = self._devices.get(device_id)
        return list(record.shared_with) if record else []


class InMemoryRuleStore:
    """Rule documents per user, stored the way the rule store returns them."""

    def __init__(self) -> None:
        self._rules: dict[str, list[AlertRule | dict[str, Any]]] = {}

    def add_rule(self, user_id: str, rule: AlertRule | dict[str, Any]) -> None:
        self._rules.setdefault(user_id, []).append(rule)

    @staticmethod
    def _is_active(rule: AlertRule | Mapping[str, Any]) -> bool:
        if isinstance(rule, AlertRule):
            return rule.active
        return parse_flag(rule.get("active"), True)

    @staticmethod
    def _rule_id(rule: AlertRule | Mapping[str, Any]) -> str:
        if isinstance(rule, AlertRule):
            return rule.id
        return str(rule.get("id") or "")

    async def active_rules_for(self, user_id: str) -> list[AlertRule | dict[str, Any]]:
        return [r for r in self._rules.get(user_id, []) if self._is_active(r)]

    async def get_rule(
        self, user_id: str, rule_id: str
    ) -> AlertRule | dict[str, Any] | None:
        for rule in self._rules.get(user_id, []):
            if self._rule_id(rule) == rule_id:
                return rule
        return None


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self._alerts: dict[str, dict[str, TriggeredAlert]] = {}

    async def append(self, alert: TriggeredAlert) -> str:
        self._alerts.setdefault(alert.user_id, {})[alert.id] = alert
        return alert.id

    async def get(self, user_id: str, alert_id: str) -> TriggeredAlert | None:
        return self._alerts.get(user_id, {}).get(alert_id)

    async def replace(self, alert: TriggeredAlert) -> None:
        user_alerts = self._alerts.get(alert.user_id, {})
        if alert.id not in user_alerts:
            raise KeyError(alert.id)
        user_alerts[alert.id] = alert

    async def query(
        self, user_id: str, rule_id: str, created_after: float
    ) -> list[TriggeredAlert]:
        return [
            a
            for a in self._alerts.get(user_id, {}).values()
            if a.rule_id == rule_id and a.created_at >= created_after
        ]

    async def recent(self, user_id: str, limit: int = 50) -> list[TriggeredAlert]:
        alerts = sorted(
            self._alerts.get(user_id, {}).values(),
            key=lambda a: a.created_at,
            reverse=True,
        )
        return alerts[: max(0, limit)]

    async def purge_older_than(self, cutoff: float) -> int:
        removed = 0
        for user_id, alerts in self._alerts.items():
            stale = [k for k, a in alerts.items() if a.created_at < cutoff]
            for key in stale:
                alerts.pop(key, None)
            if stale:
                logger.info("Purged %d old alerts for user %s", len(stale), user_id)
            removed += len(stale)
        return removed


class JsonFileHistoryStore(InMemoryHistoryStore):
    """In-memory history that rewrites a JSON file after every change.

    Lets separate CLI runs share alert history. Single process only.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self.load_state()

    def load_state(self) -> None:
        if not self._path.exists():
            return
        docs = json.loads(self._path.read_text()).get("alerts") or []
        for doc in docs:
            alert = TriggeredAlert.from_dict(doc)
            self._alerts.setdefault(alert.user_id, {})[alert.id] = alert
        logger.info("Loaded %d triggered alerts from %s", len(docs), self._path)

    def _save_state(self) -> None:
        alerts = [a.to_dict() for user in self._alerts.values() for a in user.values()]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps({"alerts": alerts}, indent=2))
        tmp.replace(self._path)

    async def append(self, alert: TriggeredAlert) -> str:
        alert_id = await super().append(alert)
        self._save_state()
        return alert_id

    async def replace(self, alert: TriggeredAlert) -> None:
        await super().replace(alert)
        self._save_state()

    async def purge_older_than(self, cutoff: float) -> int:
        removed = await super().purge_older_than(cutoff)
        if removed:
            self._save_state()
        return removed


def build_history(history_file: str | None = None) -> InMemoryHistoryStore:
    path = history_file if history_file is not None else config.HISTORY_FILE
    if path:
        return JsonFileHistoryStore(path)
    return InMemoryHistoryStore()


class LegacyMirrorHistoryStore:
    """History store that also mirrors writes into a legacy location.

    ``primary`` is authoritative for every read and its failures propagate.
    Writes to ``legacy`` are best effort: failures are logged and ignored.
    """

    def __init__(self, primary: HistoryStore, legacy: HistoryStore) -> None:
        self.primary = primary
        self.legacy = legacy

    async def append(self, alert: TriggeredAlert) -> str:
        alert_id = await self.primary.append(alert)
        try:
            await self.legacy.append(alert)
        except Exception:
            logger.warning("Legacy history mirror append failed for %s", alert.id, exc_info=True)
        return alert_id

    async def get(self, user_id: str, alert_id: str) -> TriggeredAlert | None:
        return await self.primary.get(user_id, alert_id)

    async def replace(self, alert: TriggeredAlert) -> None:
        await self.primary.replace(alert)
        try:
            await self.legacy.replace(alert)
        except Exception:
            logger.warning("Legacy history mirror update failed for %s", alert.id, exc_info=True)

    async def query(
        self, user_id: str, rule_id: str, created_after: float
    ) -> list[TriggeredAlert]:
        return await self.primary.query(user_id, rule_id, created_after)

    async def recent(self, user_id: str, limit: int = 50) -> list[TriggeredAlert]:
        return await self.primary.recent(user_id, limit)

    async def purge_older_than(self, cutoff: float) -> int:
        removed = await self.primary.purge_older_than(cutoff)
        try:
            await self.legacy.purge_older_than(cutoff)
        except Exception:
            logger.warning("Legacy history mirror purge failed", exc_info=True)
        return removed


def load_fixtures(path: str | Path) -> tuple[InMemoryDeviceRegistry, InMemoryRuleStore]:
    """Load devices and rules from a JSON file.

    Expected shape::

        {
          "devices": {"ESP32_001": {"ownerId": "u1", "sharedWith": ["u2"]}},
          "rules": {"u1": [{"id": "r1", "parameter": "soilMoisturePct", ...}]}
        }
    """
    data = json.loads(Path(path).read_text())
    registry = InMemoryDeviceRegistry()
    for device_id, device in (data.get("devices") or {}).items():
        owner = device.get("ownerId") or device.get("owner_id")
        if not owner:
            logger.warning("Device %s has no owner; skipping", device_id)
            continue
        shared = device.get("sharedWith") or device.get("shared_with") or []
        registry.add_device(device_id, str(owner), [str(u) for u in shared])
    rules = InMemoryRuleStore()
    for user_id, user_rules in (data.get("rules") or {}).items():
        for doc in user_rules or []:
            rules.add_rule(str(user_id), dict(doc))
    return registry, rules

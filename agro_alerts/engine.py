"""Alert orchestrator: telemetry sample in, per-rule outcomes out.

For every authorized user of the reporting device and each of their active
rules the engine extracts the watched value, evaluates the rule, asks the
suppression store for permission, writes the audit record and sends the
notification. Failures are contained to the rule (or user) they happen in;
:meth:`AlertEngine.process_sample` never raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from . import config
from .alerting import evaluate, format_duration, synthetic_violation
from .dispatcher import NotificationDispatcher, build_default_dispatcher
from .errors import (
    ConfigurationError,
    DataAbsentError,
    RecordingError,
    SuppressionStoreError,
)
from .models.rules import AlertRule, Parameter
from .models.suppression import STORE_UNAVAILABLE, SuppressionKey
from .models.telemetry import TelemetrySample
from .models.triggered import ORIGIN_AUTO, ORIGIN_TEST, ChannelStatus, TriggeredAlert
from .recorder import AlertRecorder
from .stores import DeviceRegistry, HistoryStore, RuleStore, authorized_users
from .suppression import SuppressionStore, build_backend
from .units import extract, percent_to_adc

logger = logging.getLogger(__name__)

NO_MATCH = "no-match"
NO_DATA = "no-data"
INVALID_RULE = "invalid-rule"
INACTIVE = "inactive"
RECORDING_FAILED = "recording-failed"
UNEXPECTED_ERROR = "unexpected-error"

TEST_DEVICE_ID = "TEST_DEVICE"


class RuleState(str, Enum):
    SKIPPED = "skipped"
    SUPPRESSED = "suppressed"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RuleOutcome:
    user_id: str
    rule_id: str
    state: RuleState
    reason: str | None = None
    value: float | None = None
    alert_id: str | None = None
    retry_after_s: float | None = None
    statuses: list[ChannelStatus] = field(default_factory=list)

    @property
    def fired(self) -> bool:
        return self.state == RuleState.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "ruleId": self.rule_id,
            "state": self.state.value,
            "reason": self.reason,
            "value": self.value,
            "alertId": self.alert_id,
            "retryAfterS": self.retry_after_s,
            "sendStatus": {
                s.channel.value: {"state": s.state.value, "error": s.error}
                for s in self.statuses
            },
        }


def _rule_id_of(raw: AlertRule | Mapping[str, Any]) -> str:
    if isinstance(raw, AlertRule):
        return raw.id
    return str(raw.get("id") or "?")


class AlertEngine:
    def __init__(
        self,
        registry: DeviceRegistry,
        rules: RuleStore,
        history: HistoryStore,
        store: SuppressionStore | None = None,
        recorder: AlertRecorder | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.rules = rules
        self.history = history
        self._clock = clock
        self.store = (
            store
            if store is not None
            else SuppressionStore(backend=build_backend(), history=history, clock=clock)
        )
        self.recorder = recorder if recorder is not None else AlertRecorder(history, clock)
        self.dispatcher = dispatcher if dispatcher is not None else build_default_dispatcher()
        self.tasks: dict[str, asyncio.Task] = {}

    async def _resolve_users(self, device_id: str) -> list[str]:
        try:
            return await authorized_users(self.registry, device_id)
        except Exception:
            logger.exception(
                "Access list lookup failed for device %s; evaluating owner only",
                device_id,
            )
        try:
            owner = await self.registry.owner_of(device_id)
        except Exception:
            logger.exception("Owner lookup failed for device %s", device_id)
            return []
        return [owner] if owner else []

    async def process_sample(
        self, device_id: str, sample: TelemetrySample | Mapping[str, Any]
    ) -> list[RuleOutcome]:
        """Evaluate one telemetry sample for every authorized user."""
        if not isinstance(sample, TelemetrySample):
            sample = TelemetrySample(device_id=device_id, values=dict(sample or {}))

        users = await self._resolve_users(device_id)
        if not users:
            logger.info("No authorized users for device %s; nothing to evaluate", device_id)
            return []

        outcomes: list[RuleOutcome] = []
        for user_id in users:
            try:
                outcomes.extend(await self._evaluate_user(user_id, sample))
            except Exception:
                logger.exception(
                    "Alert evaluation failed for user %s (device %s)", user_id, device_id
                )

        fired = sum(1 for o in outcomes if o.fired)
        logger.info(
            "Device %s: %d user(s), %d rule(s) evaluated, %d fired",
            device_id,
            len(users),
            len(outcomes),
            fired,
        )
        return outcomes

    async def _evaluate_user(
        self, user_id: str, sample: TelemetrySample
    ) -> list[RuleOutcome]:
        try:
            rules = await self.rules.active_rules_for(user_id)
        except Exception:
            logger.exception("Failed to load rules for user %s", user_id)
            return []

        outcomes: list[RuleOutcome] = []
        for raw in rules or []:
            try:
                outcomes.append(await self._evaluate_rule(user_id, raw, sample))
            except Exception:
                rule_id = _rule_id_of(raw)
                logger.exception("Rule %s for user %s failed", rule_id, user_id)
                outcomes.append(
                    RuleOutcome(user_id, rule_id, RuleState.FAILED, UNEXPECTED_ERROR)
                )
        return outcomes

    async def _evaluate_rule(
        self,
        user_id: str,
        raw: AlertRule | Mapping[str, Any],
        sample: TelemetrySample,
    ) -> RuleOutcome:
        try:
            rule = raw if isinstance(raw, AlertRule) else AlertRule.from_dict(user_id, dict(raw))
        except ConfigurationError as exc:
            logger.error("Skipping invalid rule for user %s: %s", user_id, exc)
            return RuleOutcome(user_id, _rule_id_of(raw), RuleState.SKIPPED, INVALID_RULE)

        if not rule.active:
            return RuleOutcome(user_id, rule.id, RuleState.SKIPPED, INACTIVE)

        try:
            value = extract(rule.parameter, sample)
        except DataAbsentError as exc:
            logger.debug("Rule %s skipped for device %s: %s", rule.id, sample.device_id, exc)
            return RuleOutcome(user_id, rule.id, RuleState.SKIPPED, NO_DATA)

        if not evaluate(value, rule.comparison, rule.threshold):
            return RuleOutcome(user_id, rule.id, RuleState.SKIPPED, NO_MATCH, value=value)

        return await self._fire(rule, value, user_id, sample.device_id, ORIGIN_AUTO)

    async def _fire(
        self,
        rule: AlertRule,
        value: float,
        user_id: str,
        device_id: str,
        origin: str,
    ) -> RuleOutcome:
        key = SuppressionKey(user_id, rule.id, rule.parameter)
        now = self._clock()
        try:
            async with self.store.try_acquire(
                key, now=now, is_test=origin == ORIGIN_TEST
            ) as reservation:
                decision = reservation.decision
                if not decision.allowed:
                    logger.info(
                        "Alert %s for user %s suppressed (%s, retry in %s)",
                        rule.id,
                        user_id,
                        decision.reason,
                        format_duration(decision.retry_after_s or 0),
                    )
                    return RuleOutcome(
                        user_id,
                        rule.id,
                        RuleState.SUPPRESSED,
                        decision.reason,
                        value=value,
                        retry_after_s=decision.retry_after_s,
                    )
                alert = await self.recorder.record(
                    rule, value, user_id, device_id, origin, created_at=now
                )
                try:
                    reservation.commit()
                except SuppressionStoreError:
                    logger.exception(
                        "Failed to save suppression state for %s; not sending alert %s",
                        key.as_string(),
                        alert.id,
                    )
                    await self.recorder.update_send_status(
                        alert.id,
                        user_id,
                        [ChannelStatus.failed(rule.channel, "suppression state write failed")],
                        aborted=True,
                    )
                    return RuleOutcome(
                        user_id,
                        rule.id,
                        RuleState.FAILED,
                        STORE_UNAVAILABLE,
                        value=value,
                        alert_id=alert.id,
                    )
        except SuppressionStoreError:
            logger.exception(
                "Suppression store unavailable for %s; not firing", key.as_string()
            )
            return RuleOutcome(
                user_id, rule.id, RuleState.SUPPRESSED, STORE_UNAVAILABLE, value=value
            )
        except RecordingError:
            logger.exception("Aborting alert %s for user %s", rule.id, user_id)
            return RuleOutcome(
                user_id, rule.id, RuleState.FAILED, RECORDING_FAILED, value=value
            )

        status = await self.dispatcher.send(
            rule.channel, rule.destination, rule, value, device_id
        )
        await self.recorder.update_send_status(alert.id, user_id, [status])
        logger.info(
            "Alert %s (%s) for user %s: %s via %s",
            alert.id,
            origin,
            user_id,
            status.state.value,
            rule.channel.value,
        )
        return RuleOutcome(
            user_id,
            rule.id,
            RuleState.COMPLETED,
            value=value,
            alert_id=alert.id,
            statuses=[status],
        )

    async def test_rule(
        self, user_id: str, rule_id: str, device_id: str | None = None
    ) -> RuleOutcome:
        """Fire ``rule_id`` once with a synthetic violating reading.

        Bypasses debounce and cooldown, records with origin ``test`` and
        leaves suppression state untouched.

        Raises:
            ConfigurationError: If the rule does not exist or is malformed.
        """
        raw = await self.rules.get_rule(user_id, rule_id)
        if raw is None:
            raise ConfigurationError(f"Rule {rule_id} not found for user {user_id}")
        rule = raw if isinstance(raw, AlertRule) else AlertRule.from_dict(user_id, dict(raw))

        device_id = device_id or TEST_DEVICE_ID
        target = synthetic_violation(rule.comparison, rule.threshold)
        values: dict[str, Any] = {rule.parameter.value: target}
        if rule.parameter == Parameter.SOIL_MOISTURE_PCT:
            values["soilMoistureRaw"] = percent_to_adc(target)
        sample = TelemetrySample(device_id=device_id, values=values)
        value = extract(rule.parameter, sample)

        logger.info(
            "Test firing rule %s for user %s with %s=%s",
            rule.id,
            user_id,
            rule.parameter.value,
            value,
        )
        return await self._fire(rule, value, user_id, device_id, ORIGIN_TEST)

    def cooldown_status(self, user_id: str) -> list[dict[str, object]]:
        return self.store.status(user_id, now=self._clock())

    def reset_cooldown(self, user_id: str, rule_id: str | None = None) -> int:
        return self.store.reset(user_id, rule_id)

    async def recent_alerts(self, user_id: str, limit: int = 50) -> list[TriggeredAlert]:
        return await self.history.recent(user_id, limit)

    async def cleanup(self, retention_days: int | None = None) -> int:
        """Purge TriggeredAlert records older than ``retention_days``."""
        days = config.HISTORY_RETENTION_DAYS if retention_days is None else retention_days
        cutoff = self._clock() - days * 86400
        removed = await self.history.purge_older_than(cutoff)
        logger.info("Cleaned up %d alert(s) older than %d day(s)", removed, days)
        return removed

"""Triggered alert audit records."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable

from .errors import RecordingError
from .models.rules import AlertRule
from .models.triggered import ChannelStatus, TriggeredAlert
from .stores import HistoryStore

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return secrets.token_urlsafe(12)


class AlertRecorder:
    def __init__(
        self, history: HistoryStore, clock: Callable[[], float] = time.time
    ) -> None:
        self.history = history
        self._clock = clock

    async def record(
        self,
        rule: AlertRule,
        observed_value: float,
        user_id: str,
        device_id: str,
        origin: str,
        created_at: float | None = None,
    ) -> TriggeredAlert:
        """Write the audit record for a firing.

        Raises:
            RecordingError: If the history store rejects the write. The caller
                must not notify without an audit trail.
        """
        alert = TriggeredAlert(
            id=_new_id(),
            user_id=user_id,
            rule_id=rule.id,
            parameter=rule.parameter,
            comparison=rule.comparison.value,
            threshold=rule.threshold,
            actual_value=observed_value,
            device_id=device_id,
            channel=rule.channel,
            destination=rule.destination,
            critical=rule.critical,
            origin=origin,
            created_at=self._clock() if created_at is None else created_at,
        )
        try:
            await self.history.append(alert)
        except Exception as exc:
            raise RecordingError(
                f"Failed to record alert for rule {rule.id} (user {user_id}): {exc}"
            ) from exc
        logger.info(
            "Logged triggered alert %s for user %s rule %s (%s)",
            alert.id,
            user_id,
            rule.id,
            origin,
        )
        return alert

    async def update_send_status(
        self,
        alert_id: str,
        user_id: str,
        statuses: list[ChannelStatus],
        aborted: bool = False,
    ) -> TriggeredAlert | None:
        """Store final per-channel status. Failures are logged, never raised.

        ``aborted`` marks a record whose notification was never attempted; it
        does not count as a fire for the persisted cooldown check.
        """
        try:
            current = await self.history.get(user_id, alert_id)
            if current is None:
                logger.warning("Alert %s for user %s not found", alert_id, user_id)
                return None
            if current.status_updated:
                logger.warning("Send status for alert %s already recorded", alert_id)
                return current
            updated = current.with_status(statuses, aborted=aborted)
            await self.history.replace(updated)
            return updated
        except Exception:
            logger.exception(
                "Failed to update send status for alert %s (user %s)", alert_id, user_id
            )
            return None

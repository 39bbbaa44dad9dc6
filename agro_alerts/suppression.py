"""Debounce and cooldown suppression keyed by (user, rule, parameter).

Each key has its own ``asyncio.Lock`` so unrelated users and devices never
wait on each other. The fire decision, the audit write and the state update
all happen inside :meth:`SuppressionStore.try_acquire` while the key lock is held.
Callers send notifications only after leaving that block.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable

from . import config
from .errors import SuppressionStoreError
from .models.rules import Parameter
from .models.suppression import (
    COOLDOWN,
    DEBOUNCED,
    SuppressionDecision,
    SuppressionKey,
    SuppressionState,
)
from .models.triggered import ORIGIN_AUTO
from .stores import HistoryStore

logger = logging.getLogger(__name__)


class MemoryStateBackend:
    """Key-value backend holding suppression state in process memory."""

    def __init__(self) -> None:
        self._data: dict[str, dict] = {}

    def load(self, key: str) -> dict | None:
        data = self._data.get(key)
        return dict(data) if data is not None else None

    def save(self, key: str, data: dict) -> None:
        self._data[key] = dict(data)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())


class JsonFileStateBackend(MemoryStateBackend):
    """Memory backend that rewrites a JSON file after every change.

    Survives restarts of a single process. It is not safe for several
    processes sharing one file.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self.load_state()

    def load_state(self) -> None:
        try:
            if not self._path.exists():
                return
            data = json.loads(self._path.read_text())
            self._data = {str(k): dict(v) for k, v in (data.get("keys") or {}).items()}
            logger.info("Loaded %d suppression keys from %s", len(self._data), self._path)
        except Exception as exc:
            raise SuppressionStoreError(f"Failed to load {self._path}: {exc}") from exc

    def _save_state(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps({"keys": self._data}, indent=2))
            tmp.replace(self._path)
        except Exception as exc:
            raise SuppressionStoreError(f"Failed to save {self._path}: {exc}") from exc

    def save(self, key: str, data: dict) -> None:
        super().save(key, data)
        self._save_state()

    def delete(self, key: str) -> None:
        super().delete(key)
        self._save_state()


@dataclass
class Reservation:
    """Outcome of :meth:`SuppressionStore.try_acquire`; call :meth:`commit` once."""

    store: "SuppressionStore"
    key: SuppressionKey
    now: float
    is_test: bool
    decision: SuppressionDecision
    committed: bool = field(default=False, init=False)

    def commit(self) -> None:
        if not self.decision.allowed:
            raise RuntimeError("Cannot commit a denied reservation")
        if self.committed:
            return
        if not self.is_test:
            self.store._record(self.key, self.now)
        self.committed = True


class SuppressionStore:
    def __init__(
        self,
        backend: MemoryStateBackend | None = None,
        history: HistoryStore | None = None,
        debounce_s: float | None = None,
        cooldown_s: float | None = None,
        soil_moisture_cooldown_s: float | None = None,
        persisted_cooldown_all: bool | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend if backend is not None else MemoryStateBackend()
        self.history = history
        self.debounce_s = float(config.DEBOUNCE_S if debounce_s is None else debounce_s)
        self.cooldown_s = float(config.COOLDOWN_S if cooldown_s is None else cooldown_s)
        self.soil_moisture_cooldown_s = float(
            config.SOIL_MOISTURE_COOLDOWN_S
            if soil_moisture_cooldown_s is None
            else soil_moisture_cooldown_s
        )
        self.persisted_cooldown_all = (
            config.PERSISTED_COOLDOWN_ALL
            if persisted_cooldown_all is None
            else persisted_cooldown_all
        )
        self._clock = clock
        self._locks: dict[SuppressionKey, asyncio.Lock] = {}

    def lock_for(self, key: SuppressionKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def cooldown_for(self, parameter: Parameter) -> float:
        if parameter == Parameter.SOIL_MOISTURE_PCT:
            return self.soil_moisture_cooldown_s
        return self.cooldown_s

    def uses_history(self, parameter: Parameter) -> bool:
        if self.history is None:
            return False
        return parameter == Parameter.SOIL_MOISTURE_PCT or self.persisted_cooldown_all

    def get_state(self, key: SuppressionKey) -> SuppressionState:
        try:
            data = self.backend.load(key.as_string())
        except SuppressionStoreError:
            raise
        except Exception as exc:
            raise SuppressionStoreError(f"Failed to read state for {key}: {exc}") from exc
        return SuppressionState.from_dict(data) if data else SuppressionState()

    def _record(self, key: SuppressionKey, now: float) -> None:
        state = SuppressionState(last_debounce_at=now, last_cooldown_at=now)
        try:
            self.backend.save(key.as_string(), state.to_dict())
        except SuppressionStoreError:
            raise
        except Exception as exc:
            raise SuppressionStoreError(f"Failed to write state for {key}: {exc}") from exc
        logger.debug("Recorded fire for %s at %.0f", key.as_string(), now)

    async def _check(self, key: SuppressionKey, now: float) -> SuppressionDecision:
        state = self.get_state(key)

        if state.last_debounce_at is not None:
            elapsed = now - state.last_debounce_at
            if elapsed < self.debounce_s:
                return SuppressionDecision.deny(DEBOUNCED, self.debounce_s - elapsed)

        cooldown_s = self.cooldown_for(key.parameter)
        if state.last_cooldown_at is not None:
            elapsed = now - state.last_cooldown_at
            if elapsed < cooldown_s:
                return SuppressionDecision.deny(COOLDOWN, cooldown_s - elapsed)

        if self.uses_history(key.parameter):
            try:
                recent = await self.history.query(
                    key.user_id, key.rule_id, now - cooldown_s
                )
            except Exception as exc:
                raise SuppressionStoreError(
                    f"History lookup failed for {key}: {exc}"
                ) from exc
            fired = [
                a.created_at
                for a in recent
                if a.origin == ORIGIN_AUTO and not a.aborted
            ]
            if fired:
                elapsed = now - max(fired)
                if elapsed < cooldown_s:
                    return SuppressionDecision.deny(COOLDOWN, cooldown_s - elapsed)

        return SuppressionDecision.allow()

    async def may_fire(
        self, key: SuppressionKey, now: float | None = None, is_test: bool = False
    ) -> SuppressionDecision:
        """Answer whether ``key`` may fire at ``now`` without recording anything."""
        if is_test:
            return SuppressionDecision.allow()
        now = self._clock() if now is None else now
        async with self.lock_for(key):
            return await self._check(key, now)

    async def record_fire(self, key: SuppressionKey, now: float | None = None) -> None:
        now = self._clock() if now is None else now
        async with self.lock_for(key):
            self._record(key, now)

    @asynccontextmanager
    async def try_acquire(
        self, key: SuppressionKey, now: float | None = None, is_test: bool = False
    ) -> AsyncIterator[Reservation]:
        """Hold the key lock while the caller decides, records and commits.

        Test reservations skip the lock and both gates and never commit state.
        """
        now = self._clock() if now is None else now
        if is_test:
            yield Reservation(self, key, now, True, SuppressionDecision.allow())
            return
        async with self.lock_for(key):
            decision = await self._check(key, now)
            yield Reservation(self, key, now, False, decision)

    def status(self, user_id: str, now: float | None = None) -> list[dict[str, object]]:
        """In-memory view of every suppression key owned by ``user_id``."""
        now = self._clock() if now is None else now
        out: list[dict[str, object]] = []
        for raw in self.backend.keys():
            try:
                key = SuppressionKey.from_string(raw)
            except ValueError:
                logger.warning("Ignoring malformed suppression key %r", raw)
                continue
            if key.user_id != user_id:
                continue
            state = self.get_state(key)
            cooldown_s = self.cooldown_for(key.parameter)
            remaining = 0.0
            if state.last_cooldown_at is not None:
                remaining = max(0.0, cooldown_s - (now - state.last_cooldown_at))
            out.append(
                {
                    "rule_id": key.rule_id,
                    "parameter": key.parameter.value,
                    "allowed": remaining <= 0,
                    "retry_after_s": remaining or None,
                    "last_debounce_at": state.last_debounce_at,
                    "last_cooldown_at": state.last_cooldown_at,
                }
            )
        return sorted(out, key=lambda item: (item["rule_id"], item["parameter"]))

    def reset(self, user_id: str, rule_id: str | None = None) -> int:
        """Drop suppression state for a user (optionally one rule). Test/admin use."""
        removed = 0
        for raw in self.backend.keys():
            try:
                key = SuppressionKey.from_string(raw)
            except ValueError:
                continue
            if key.user_id != user_id:
                continue
            if rule_id is not None and key.rule_id != rule_id:
                continue
            self.backend.delete(raw)
            removed += 1
        logger.info(
            "Cooldown reset for user %s (%s): %d key(s)",
            user_id,
            rule_id or "all rules",
            removed,
        )
        return removed


def build_backend(state_file: str | None = None) -> MemoryStateBackend:
    path = state_file if state_file is not None else config.SUPPRESSION_STATE_FILE
    if path:
        return JsonFileStateBackend(path)
    return MemoryStateBackend()

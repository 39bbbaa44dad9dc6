import asyncio
import json
from dataclasses import replace

import pytest

from agro_alerts.errors import SuppressionStoreError
from agro_alerts.models.rules import Channel, Parameter
from agro_alerts.models.suppression import COOLDOWN, DEBOUNCED, SuppressionKey
from agro_alerts.models.triggered import ORIGIN_AUTO, ORIGIN_TEST, TriggeredAlert
from agro_alerts.stores import InMemoryHistoryStore
from agro_alerts.suppression import (
    JsonFileStateBackend,
    MemoryStateBackend,
    SuppressionStore,
    build_backend,
)

from conftest import BrokenBackend, FailingHistoryStore, FakeClock

KEY = SuppressionKey("u1", "r1", Parameter.AIR_TEMPERATURE)
SOIL_KEY = SuppressionKey("u1", "r2", Parameter.SOIL_MOISTURE_PCT)


def make_store(clock, history=None, backend=None, **kwargs) -> SuppressionStore:
    options = {
        "debounce_s": 60,
        "cooldown_s": 7200,
        "soil_moisture_cooldown_s": 3600,
        "persisted_cooldown_all": False,
    }
    options.update(kwargs)
    return SuppressionStore(
        backend=backend or MemoryStateBackend(), history=history, clock=clock, **options
    )


def history_alert(created_at: float, origin: str = ORIGIN_AUTO, rule_id: str = "r2"):
    return TriggeredAlert(
        id=f"a-{created_at}",
        user_id="u1",
        rule_id=rule_id,
        parameter=Parameter.SOIL_MOISTURE_PCT,
        comparison="<",
        threshold=30,
        actual_value=24.0,
        device_id="ESP32_001",
        channel=Channel.SMS,
        destination="+94771234567",
        critical=False,
        origin=origin,
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_first_fire_is_allowed() -> None:
    clock = FakeClock()
    store = make_store(clock)
    decision = await store.may_fire(KEY)
    assert decision.allowed
    assert decision.reason is None


@pytest.mark.asyncio
async def test_debounce_blocks_repeat_within_window() -> None:
    clock = FakeClock()
    store = make_store(clock)
    await store.record_fire(KEY)
    clock.advance(10)
    decision = await store.may_fire(KEY)
    assert not decision.allowed
    assert decision.reason == DEBOUNCED
    assert decision.retry_after_s == pytest.approx(50)


@pytest.mark.asyncio
async def test_cooldown_law() -> None:
    clock = FakeClock()
    store = make_store(clock)
    fired_at = clock.now
    await store.record_fire(KEY)

    blocked = await store.may_fire(KEY, now=fired_at + 7200 - 0.001)
    assert not blocked.allowed
    assert blocked.reason == COOLDOWN

    allowed = await store.may_fire(KEY, now=fired_at + 7200 + 0.001)
    assert allowed.allowed


@pytest.mark.asyncio
async def test_soil_moisture_uses_its_own_cooldown() -> None:
    clock = FakeClock()
    store = make_store(clock)
    await store.record_fire(SOIL_KEY)
    assert not (await store.may_fire(SOIL_KEY, now=clock.now + 3599)).allowed
    assert (await store.may_fire(SOIL_KEY, now=clock.now + 3601)).allowed


@pytest.mark.asyncio
async def test_may_fire_does_not_record() -> None:
    clock = FakeClock()
    store = make_store(clock)
    await store.may_fire(KEY)
    await store.may_fire(KEY)
    assert store.get_state(KEY).last_cooldown_at is None


@pytest.mark.asyncio
async def test_test_firings_bypass_and_never_mutate_state() -> None:
    clock = FakeClock()
    store = make_store(clock)
    await store.record_fire(KEY)
    before = store.get_state(KEY)
    clock.advance(5)

    assert (await store.may_fire(KEY, is_test=True)).allowed
    async with store.try_acquire(KEY, is_test=True) as reservation:
        assert reservation.decision.allowed
        reservation.commit()

    assert store.get_state(KEY) == before


@pytest.mark.asyncio
async def test_commit_writes_both_timestamps() -> None:
    clock = FakeClock()
    store = make_store(clock)
    async with store.try_acquire(KEY) as reservation:
        assert reservation.decision.allowed
        reservation.commit()
    state = store.get_state(KEY)
    assert state.last_debounce_at == clock.now
    assert state.last_cooldown_at == clock.now


@pytest.mark.asyncio
async def test_commit_of_denied_reservation_raises() -> None:
    clock = FakeClock()
    store = make_store(clock)
    await store.record_fire(KEY)
    async with store.try_acquire(KEY) as reservation:
        assert not reservation.decision.allowed
        with pytest.raises(RuntimeError):
            reservation.commit()


@pytest.mark.asyncio
async def test_concurrent_acquires_allow_exactly_one() -> None:
    clock = FakeClock()
    store = make_store(clock)
    fired: list[int] = []

    async def attempt(n: int) -> None:
        async with store.try_acquire(KEY) as reservation:
            if not reservation.decision.allowed:
                return
            await asyncio.sleep(0)
            fired.append(n)
            reservation.commit()

    await asyncio.gather(*(attempt(n) for n in range(10)))
    assert len(fired) == 1


@pytest.mark.asyncio
async def test_history_check_denies_recent_auto_fire() -> None:
    clock = FakeClock()
    history = InMemoryHistoryStore()
    await history.append(history_alert(clock.now - 600))
    store = make_store(clock, history=history)

    decision = await store.may_fire(SOIL_KEY)
    assert not decision.allowed
    assert decision.reason == COOLDOWN
    assert decision.retry_after_s == pytest.approx(3000)


@pytest.mark.asyncio
async def test_history_check_allows_at_cooldown_boundary() -> None:
    clock = FakeClock()
    history = InMemoryHistoryStore()
    await history.append(history_alert(clock.now - 3600))
    store = make_store(clock, history=history)
    assert (await store.may_fire(SOIL_KEY)).allowed


@pytest.mark.asyncio
async def test_history_check_ignores_aborted_records() -> None:
    clock = FakeClock()
    history = InMemoryHistoryStore()
    await history.append(replace(history_alert(clock.now - 60), aborted=True))
    store = make_store(clock, history=history)
    assert (await store.may_fire(SOIL_KEY)).allowed


@pytest.mark.asyncio
async def test_history_check_ignores_test_records_and_old_records() -> None:
    clock = FakeClock()
    history = InMemoryHistoryStore()
    await history.append(history_alert(clock.now - 60, origin=ORIGIN_TEST))
    await history.append(history_alert(clock.now - 4000))
    store = make_store(clock, history=history)
    assert (await store.may_fire(SOIL_KEY)).allowed


@pytest.mark.asyncio
async def test_history_check_only_for_soil_unless_enabled_for_all() -> None:
    clock = FakeClock()
    history = InMemoryHistoryStore()
    await history.append(history_alert(clock.now - 60, rule_id="r1"))

    store = make_store(clock, history=history)
    assert (await store.may_fire(KEY)).allowed

    store_all = make_store(clock, history=history, persisted_cooldown_all=True)
    assert not (await store_all.may_fire(KEY)).allowed


@pytest.mark.asyncio
async def test_history_failure_is_a_store_error() -> None:
    clock = FakeClock()
    store = make_store(clock, history=FailingHistoryStore(fail_query=True))
    with pytest.raises(SuppressionStoreError):
        await store.may_fire(SOIL_KEY)


@pytest.mark.asyncio
async def test_backend_failures_raise_store_error() -> None:
    clock = FakeClock()
    store = make_store(clock, backend=BrokenBackend(fail_load=True))
    with pytest.raises(SuppressionStoreError):
        await store.may_fire(KEY)

    store = make_store(clock, backend=BrokenBackend(fail_save=True))
    with pytest.raises(SuppressionStoreError):
        await store.record_fire(KEY)


@pytest.mark.asyncio
async def test_status_and_reset() -> None:
    clock = FakeClock()
    store = make_store(clock)
    await store.record_fire(KEY)
    await store.record_fire(SOIL_KEY)
    await store.record_fire(SuppressionKey("u2", "r9", Parameter.CO2))
    clock.advance(600)

    status = store.status("u1")
    assert [item["rule_id"] for item in status] == ["r1", "r2"]
    assert status[0]["allowed"] is False
    assert status[0]["retry_after_s"] == pytest.approx(6600)
    assert status[1]["retry_after_s"] == pytest.approx(3000)

    assert store.reset("u1", "r1") == 1
    assert [item["rule_id"] for item in store.status("u1")] == ["r2"]
    assert store.reset("u1") == 1
    assert store.status("u1") == []
    assert len(store.status("u2")) == 1


@pytest.mark.asyncio
async def test_json_backend_survives_restart(tmp_path) -> None:
    path = tmp_path / "state" / "suppression.json"
    clock = FakeClock()
    store = make_store(clock, backend=JsonFileStateBackend(path))
    await store.record_fire(KEY)

    data = json.loads(path.read_text())
    assert KEY.as_string() in data["keys"]

    reloaded = make_store(clock, backend=JsonFileStateBackend(path))
    clock.advance(30)
    decision = await reloaded.may_fire(KEY)
    assert decision.reason == DEBOUNCED


def test_json_backend_rejects_corrupt_file(tmp_path) -> None:
    path = tmp_path / "suppression.json"
    path.write_text("{not json")
    with pytest.raises(SuppressionStoreError):
        JsonFileStateBackend(path)


def test_build_backend(tmp_path) -> None:
    assert type(build_backend("")) is MemoryStateBackend
    assert isinstance(build_backend(str(tmp_path / "s.json")), JsonFileStateBackend)

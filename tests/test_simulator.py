import random
from datetime import datetime, timezone

import pytest
import requests

import simulator
from alerting.errors import TransientStoreError
from alerting.models import ALERTS, READINGS
from simulator import BinSimulator, SimulatedBin, default_bins, is_meal_time, local_submitter, seed_history


class FixedRandom:
    """rng stub: random() always returns `value`."""

    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def _bin(weight=1.0, capacity=5.0):
    return SimulatedBin("BIN-001", "Canteen 1", capacity, weight)


def test_default_bins_come_from_registry_seed():
    bins = {b.bin_id: b for b in default_bins()}
    assert bins["BIN-001"].capacity_kg == 5
    assert bins["BIN-001"].current_weight == 1.5
    assert bins["BIN-002"].location == "Canteen 2"


@pytest.mark.parametrize("hour,expected", [(9, False), (11, True), (13, True), (15, False), (18, True)])
def test_is_meal_time(hour, expected):
    assert is_meal_time(hour) is expected


def test_meal_time_doubles_accumulation():
    sim = BinSimulator([], submit=None, rng=FixedRandom(0.5))
    assert sim.waste_increase(9) == pytest.approx(0.5)
    assert sim.waste_increase(12) == pytest.approx(1.0)


def test_step_accumulates_without_collection():
    sim = BinSimulator([], submit=None, rng=FixedRandom(0.9))
    sim_bin = _bin(weight=1.0)
    assert sim.step(sim_bin, hour=9) == pytest.approx(1.7)


def test_step_caps_overflow():
    sim = BinSimulator([], submit=None, rng=FixedRandom(0.9))
    sim_bin = _bin(weight=5.9)
    assert sim.step(sim_bin, hour=12) == 6.0
    assert sim.step(sim_bin, hour=12) == 6.0


def test_step_collection_resets_to_residual():
    sim = BinSimulator([], submit=None, rng=FixedRandom(0.0))
    sim_bin = _bin(weight=4.0)
    assert sim.step(sim_bin, hour=9) == pytest.approx(0.1)


def test_no_collection_below_minimum_weight():
    sim = BinSimulator([], submit=None, rng=FixedRandom(0.0))
    sim_bin = _bin(weight=1.0)
    assert sim.step(sim_bin, hour=9) == pytest.approx(1.25)


def test_tick_runs_through_processor(processor, store, clock):
    processor.attach()
    bins = [_bin(weight=4.5), SimulatedBin("BIN-002", "Canteen 2", 10.0, 2.0)]
    sim = BinSimulator(bins, local_submitter(processor), rng=FixedRandom(0.9), clock=clock)

    sent = sim.tick()

    assert set(sent) == {"BIN-001", "BIN-002"}
    readings = store.query(READINGS)
    assert len(readings) == 2
    assert all(r["simulated"] is True for r in readings)
    assert all("percentFull" in r for r in readings)
    # BIN-001 crosses the full threshold; the processor raised the alert
    alerts = store.query(ALERTS, filters={"binId": "BIN-001"})
    assert len(alerts) == 1 and alerts[0]["kind"] == "full"


def test_tick_continues_after_submit_failure(clock):
    submitted = []

    def submit(bin_id, weight_kg):
        if bin_id == "BIN-001":
            raise TransientStoreError("store down")
        submitted.append(bin_id)

    bins = [_bin(), SimulatedBin("BIN-002", "Canteen 2", 10.0, 2.0)]
    sent = BinSimulator(bins, submit, rng=FixedRandom(0.9), clock=clock).tick()

    assert list(sent) == ["BIN-002"]
    assert submitted == ["BIN-002"]


def test_http_submitter_posts_reading(monkeypatch):
    posted = []

    class FakeResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return {"success": True}

    class FakeSession:
        def post(self, url, json=None, timeout=None):
            posted.append((url, json))
            return FakeResponse()

    monkeypatch.setattr(simulator.requests, "Session", FakeSession)

    submit = simulator.http_submitter("http://localhost:8000/")
    assert submit("BIN-001", 2.5) == {"success": True}
    assert posted == [("http://localhost:8000/api/readings", {"binId": "BIN-001", "weightKg": 2.5})]


def test_http_submitter_errors_are_skipped_by_tick(monkeypatch, clock):
    class FailingSession:
        def post(self, url, json=None, timeout=None):
            raise requests.ConnectionError("refused")

    monkeypatch.setattr(simulator.requests, "Session", FailingSession)
    sim = BinSimulator([_bin()], simulator.http_submitter("http://nowhere"), rng=FixedRandom(0.9), clock=clock)

    assert sim.tick() == {}


def test_seed_history(store):
    now = datetime(2026, 10, 18, 23, 59, tzinfo=timezone.utc)
    ids = seed_history(store, default_bins(), days=7, rng=random.Random(42), now=now)

    readings = store.query(READINGS)
    assert len(ids) == len(readings)
    assert 2 * 7 * 3 <= len(readings) <= 2 * 7 * 5
    assert all(r["simulated"] is True and "percentFull" in r for r in readings)
    assert all(0 <= r["percentFull"] <= 100 for r in readings)
    assert store.query(ALERTS) == []


def test_seed_history_skips_future_timestamps(store):
    now = datetime(2026, 10, 18, 7, 0, tzinfo=timezone.utc)  # before 08:00, today's slots are all ahead
    seed_history(store, default_bins(), days=1, rng=random.Random(1), now=now)
    assert store.query(READINGS) == []

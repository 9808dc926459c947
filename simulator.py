"""
BinWatch — Bin Simulator
=========================
Generates realistic waste-bin weight readings on a fixed interval.

  - Waste accumulates faster at meal times (11-13, 17-19)
  - Random collections drop a bin back to a small residual weight
  - Weight is capped slightly above capacity (overflow)

Readings go through the same Reading Processor as live ingestion
(in-process), or through the ingestion API with --api-url. The simulator
never writes alerts itself.

Usage:
    python simulator.py                      # in-process, JSON store
    python simulator.py --history            # also backfill the last 7 days
    python simulator.py --api-url http://localhost:8000
"""
import argparse
import logging
import random
import threading
from dataclasses import dataclass
from datetime import timedelta

import requests

from alerting.errors import BinWatchError
from alerting.levels import fill_status, percent_full
from alerting.models import READINGS, Reading, utcnow
from alerting.processor import ReadingProcessor
from alerting.registry import BinRegistry
from config.bins import BINS, INITIAL_WEIGHT_KG
from config.settings import (
    COLLECTION_MIN_KG, COLLECTION_PROBABILITY, LOG_FORMAT, LOG_LEVEL,
    MAX_FILL_RATIO, MEAL_HOURS, SIMULATION_INTERVAL_SEC, WASTE_ACCUMULATION_KG,
)
from storage.documents import create_store

logger = logging.getLogger("simulator")


@dataclass
class SimulatedBin:
    bin_id: str
    location: str
    capacity_kg: float
    current_weight: float


def default_bins():
    return [
        SimulatedBin(bid, info["location"], info["capacityKg"], INITIAL_WEIGHT_KG.get(bid, 0.0))
        for bid, info in BINS.items()
    ]


def is_meal_time(hour):
    return any(start <= hour <= end for start, end in MEAL_HOURS)


# ═══════════════════════════════════════════════════════════════════════════
# SUBMITTERS (where a simulated reading goes)
# ═══════════════════════════════════════════════════════════════════════════
def local_submitter(processor):
    def submit(bin_id, weight_kg):
        processor.record_reading(bin_id, weight_kg, simulated=True)
    return submit


def http_submitter(api_url, timeout=10):
    session = requests.Session()
    url = f"{api_url.rstrip('/')}/api/readings"

    def submit(bin_id, weight_kg):
        resp = session.post(url, json={"binId": bin_id, "weightKg": weight_kg}, timeout=timeout)
        resp.raise_for_status()
        return resp.json()
    return submit


# ═══════════════════════════════════════════════════════════════════════════
# SIMULATOR
# ═══════════════════════════════════════════════════════════════════════════
class BinSimulator:
    """Holds one current weight per bin; nothing else accumulates."""

    def __init__(self, bins, submit, rng=None, clock=None):
        self.bins = list(bins)
        self.submit = submit
        self.rng = rng or random.Random()
        self._clock = clock or utcnow
        self._stop = threading.Event()
        self._thread = None

    def waste_increase(self, hour):
        base = WASTE_ACCUMULATION_KG * 2 if is_meal_time(hour) else WASTE_ACCUMULATION_KG
        # ±50% variation
        return base * (0.5 + self.rng.random())

    def step(self, sim_bin, hour):
        """Advance one bin by one interval. Returns the weight to report."""
        sim_bin.current_weight += self.waste_increase(hour)

        if self.rng.random() < COLLECTION_PROBABILITY and sim_bin.current_weight > COLLECTION_MIN_KG:
            residual = 0.1 + self.rng.random() * 0.3
            logger.info("🗑️  Collection simulated for %s: %.2fkg → %.2fkg",
                        sim_bin.bin_id, sim_bin.current_weight, residual)
            sim_bin.current_weight = residual

        sim_bin.current_weight = min(sim_bin.current_weight, sim_bin.capacity_kg * MAX_FILL_RATIO)
        return round(sim_bin.current_weight, 2)

    def tick(self):
        """One interval for every bin. Returns {bin_id: weight} for readings that were accepted."""
        hour = self._clock().astimezone().hour
        sent = {}
        for sim_bin in self.bins:
            weight = self.step(sim_bin, hour)
            try:
                self.submit(sim_bin.bin_id, weight)
            except (BinWatchError, requests.RequestException) as e:
                logger.error("Error sending reading for %s: %s", sim_bin.bin_id, e)
                continue
            pct = percent_full(weight, sim_bin.capacity_kg)
            logger.info("%s %s (%s): %skg (%s%%)", fill_status(pct), sim_bin.bin_id, sim_bin.location, weight, pct)
            sent[sim_bin.bin_id] = weight
        return sent

    def run(self, interval=SIMULATION_INTERVAL_SEC, max_ticks=None):
        ticks = 0
        while not self._stop.wait(interval):
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break

    def start(self, interval=SIMULATION_INTERVAL_SEC):
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, args=(interval,), name="bin-simulator", daemon=True)
        self._thread.start()
        logger.info("Simulator started (%ss interval, %d bins)", interval, len(self.bins))

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)


# ═══════════════════════════════════════════════════════════════════════════
# HISTORICAL BACKFILL
# ═══════════════════════════════════════════════════════════════════════════
def seed_history(store, bins, days=7, rng=None, now=None):
    """
    3-5 readings per bin per day between 08:00 and 20:00 for the last
    `days` days. percentFull and processedAt are attached directly; no alerts are produced.
    """
    rng = rng or random.Random()
    now = now or utcnow()
    readings = []
    for day in range(days - 1, -1, -1):
        for sim_bin in bins:
            for _ in range(3 + rng.randrange(3)):
                ts = (now - timedelta(days=day)).replace(
                    hour=8 + rng.randrange(12), minute=rng.randrange(60), second=0, microsecond=0,
                )
                if ts > now:
                    continue
                base = min(3.0, sim_bin.capacity_kg * 0.4)
                weight = round(max(0.1, base + rng.random() * 4), 2)
                readings.append(Reading(
                    bin_id=sim_bin.bin_id,
                    weight_kg=weight,
                    ts=ts,
                    percent_full=percent_full(weight, sim_bin.capacity_kg),
                    created_at=now,
                    simulated=True,
                    processed_at=now,
                ))
    ids = []
    # Batches of 100, like the hosted store's batch limit
    for i in range(0, len(readings), 100):
        batch = readings[i:i + 100]
        ids.extend(store.add_many(READINGS, [r.to_document() for r in batch]))
        logger.info("📊 Added %d historical readings", len(batch))
    return ids


# ═══════════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════════
def main(argv=None):
    parser = argparse.ArgumentParser(description="BinWatch waste-bin simulator")
    parser.add_argument("--api-url", help="POST readings to this BinWatch API instead of the local store")
    parser.add_argument("--interval", type=float, default=SIMULATION_INTERVAL_SEC)
    parser.add_argument("--ticks", type=int, default=None, help="stop after this many intervals")
    parser.add_argument("--history", action="store_true", help="backfill the last 7 days first")
    parser.add_argument("--no-process", action="store_true",
                        help="only write readings (reading_engine.py processes them)")
    parser.add_argument("--store-dir", default=None)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    rng = random.Random(args.seed)
    bins = default_bins()

    logger.info("🚀 Starting BinWatch Simulator (%ss interval)", args.interval)

    if args.api_url:
        submit = http_submitter(args.api_url)
    else:
        store = create_store(root=args.store_dir)
        registry = BinRegistry(store)
        registry.seed()
        if args.history:
            seed_history(store, bins, rng=rng)
        processor = ReadingProcessor(store, registry=registry)
        if not args.no_process:
            processor.attach()
        submit = local_submitter(processor)

    for sim_bin in bins:
        logger.info("📍 %s (%s): %skg capacity, starting at %skg",
                    sim_bin.bin_id, sim_bin.location, sim_bin.capacity_kg, sim_bin.current_weight)

    simulator = BinSimulator(bins, submit, rng=rng)
    try:
        simulator.run(interval=args.interval, max_ticks=args.ticks)
    except KeyboardInterrupt:
        logger.info("🛑 Stopping simulator...")
    logger.info("✅ Simulator stopped.")


if __name__ == "__main__":
    main()

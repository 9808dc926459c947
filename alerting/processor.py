"""
BinWatch — Reading Processor
Turns a raw weight reading into percent-full, writes it onto the reading,
then hands the bin to the Alert Lifecycle Manager.

A reading is done once it carries `processedAt` (stamped after the alert
reconciliation succeeds) or `skippedReason` (unknown bin, malformed data).
Anything else is pending and gets redelivered by the sweep, so a store
failure during reconciliation is retried rather than lost.
"""
import logging
import math
from datetime import timezone

from pydantic import ValidationError as SchemaError

from alerting import errors
from alerting.levels import percent_full
from alerting.lifecycle import AlertLifecycleManager
from alerting.models import READINGS, Reading, to_iso, utcnow
from alerting.registry import BinRegistry

logger = logging.getLogger(__name__)

SKIP_UNKNOWN_BIN = "bin-not-found"
SKIP_INVALID     = "invalid-reading"


def validate_weight(weight_kg):
    """Weight must be a finite, non-negative number (bool is not a number here)."""
    if isinstance(weight_kg, bool) or not isinstance(weight_kg, (int, float)):
        raise errors.ValidationError("weightKg must be a non-negative number")
    if not math.isfinite(weight_kg) or weight_kg < 0:
        raise errors.ValidationError("weightKg must be a non-negative number")
    return float(weight_kg)


def validate_bin_id(bin_id):
    if not isinstance(bin_id, str) or not bin_id.strip():
        raise errors.ValidationError("binId is required")
    return bin_id.strip()


class ReadingProcessor:

    def __init__(self, store, lifecycle=None, registry=None, clock=None):
        self.store = store
        self.lifecycle = lifecycle or AlertLifecycleManager(store, clock=clock)
        self.registry = registry or BinRegistry(store)
        self._clock = clock or utcnow

    def attach(self):
        """Process every reading added to the store from now on (in-process trigger)."""
        self.store.subscribe(READINGS, self.handle_created)

    def detach(self):
        self.store.unsubscribe(READINGS, self.handle_created)

    def record_reading(self, bin_id, weight_kg, ts=None, simulated=False):
        """Validate and append a reading. Returns the stored Reading."""
        bin_id = validate_bin_id(bin_id)
        weight = validate_weight(weight_kg)
        now = self._clock()
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        reading = Reading(
            bin_id=bin_id,
            weight_kg=weight,
            ts=ts or now,
            created_at=now,
            simulated=simulated,
        )
        reading_id = self.store.add(READINGS, reading.to_document())
        logger.info("Reading ingested bin=%s weightKg=%s id=%s", bin_id, weight, reading_id)
        return reading.model_copy(update={"id": reading_id})

    def ingest(self, bin_id, weight_kg, capacity_kg, reading_id=None):
        """
        Compute percent-full, persist it onto the reading (when given),
        reconcile the bin's alert and then stamp the reading processed.
        Returns percent-full.
        """
        weight = validate_weight(weight_kg)
        pct = percent_full(weight, capacity_kg)
        if reading_id is not None:
            current = self.store.get(READINGS, reading_id)
            if current is None:
                raise errors.NotFoundError(f"Reading {reading_id} not found")
            if current.get("percentFull") != pct:
                self.store.update(READINGS, reading_id, {"percentFull": pct})
        self.lifecycle.reconcile(bin_id, pct)
        if reading_id is not None:
            self.store.update(READINGS, reading_id, {"processedAt": to_iso(self._clock())})
        return pct

    def _skip(self, reading_id, reason):
        """Park a reading that will never process; the sweep ignores it."""
        if reading_id is None:
            return
        self.store.update(READINGS, reading_id, {"skippedReason": reason})

    def process_reading(self, reading):
        """
        Reading-created handler. Unknown bins and malformed readings are
        logged and marked skipped. Returns percent-full, or None when skipped.
        """
        if isinstance(reading, dict):
            try:
                reading = Reading.from_document(reading)
            except SchemaError:
                logger.warning("Invalid reading data: %s", reading)
                self._skip(reading.get("id"), SKIP_INVALID)
                return None

        bin_ = self.registry.get(reading.bin_id)
        if bin_ is None:
            logger.warning("Bin not found bin=%s reading=%s", reading.bin_id, reading.id)
            self._skip(reading.id, SKIP_UNKNOWN_BIN)
            return None

        return self.ingest(reading.bin_id, reading.weight_kg, bin_.capacity_kg, reading_id=reading.id)

    def handle_created(self, doc):
        """Store-subscription entry point. Transient failures wait for the pending sweep."""
        try:
            return self.process_reading(doc)
        except errors.TransientStoreError:
            logger.exception("Error processing reading %s; left pending for retry", doc.get("id"))
            return None

    def pending_readings(self, limit=None):
        """Reading documents that are neither processed nor skipped, oldest first."""
        return self.store.query(
            READINGS,
            filters={"processedAt": None, "skippedReason": None},
            order_by="ts",
            limit=limit,
        )

    def process_pending(self, limit=None):
        """Redeliver pending readings. Returns how many were processed."""
        processed = 0
        for doc in self.pending_readings(limit=limit):
            try:
                pct = self.process_reading(doc)
            except errors.TransientStoreError:
                logger.exception("Redelivery failed for reading %s; will retry", doc.get("id"))
                continue
            if pct is not None:
                processed += 1
        if processed:
            logger.info("Processed %d pending readings", processed)
        return processed

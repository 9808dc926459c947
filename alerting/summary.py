"""
BinWatch — Weekly Summary Aggregator
Per active bin, over [week_start, week_end):
  totalWeight / avgWeight / maxWeight / readingCount from readings,
  collectionCount inferred from weight drops,
  alertCount from every alert (acknowledged or not) stamped in the window.

COLLECTION HEURISTIC:
  A collection is counted when a reading weighs less than half of the
  previous one (timestamp order). It assumes weight only grows between
  collections. Sensor noise that halves a reading is counted as a
  collection; a collection whose next reading is still above half of the
  previous weight is missed.
"""
import logging
from datetime import timedelta

from alerting.models import ALERTS, READINGS, SUMMARIES, WeeklySummary, utcnow
from alerting.registry import BinRegistry
from config.settings import COLLECTION_DROP_RATIO, SUMMARY_WINDOW_DAYS

logger = logging.getLogger(__name__)


def count_collections(weights, drop_ratio=COLLECTION_DROP_RATIO):
    """Number of drops below `drop_ratio` of the previous weight."""
    collections = 0
    last = 0.0
    for weight in weights:
        if last > 0 and weight < last * drop_ratio:
            collections += 1
        last = weight
    return collections


class WeeklySummaryAggregator:

    def __init__(self, store, registry=None, clock=None):
        self.store = store
        self.registry = registry or BinRegistry(store)
        self._clock = clock or utcnow

    def build_summary(self, bin_, week_start, week_end, created_at=None):
        readings = self.store.query(
            READINGS,
            filters={"binId": bin_.id},
            range_field="ts", start=week_start, end=week_end,
            order_by="ts",
        )
        weights = [r.get("weightKg") or 0.0 for r in readings]
        alerts = self.store.query(
            ALERTS,
            filters={"binId": bin_.id},
            range_field="ts", start=week_start, end=week_end,
        )
        total = sum(weights)
        return WeeklySummary(
            bin_id=bin_.id,
            bin_location=bin_.location or "Unknown",
            week_start=week_start,
            week_end=week_end,
            total_weight=total,
            avg_weight=total / len(weights) if weights else 0.0,
            max_weight=max(weights, default=0.0),
            reading_count=len(weights),
            collection_count=count_collections(weights),
            alert_count=len(alerts),
            created_at=created_at or self._clock(),
        )

    def summarize(self, week_start, week_end):
        """Build and persist one summary per active bin in a single batch."""
        logger.info("Starting weekly summary generation %s → %s", week_start, week_end)
        now = self._clock()
        summaries = [self.build_summary(b, week_start, week_end, created_at=now)
                     for b in self.registry.active_bins()]
        ids = self.store.add_many(SUMMARIES, [s.to_document() for s in summaries])
        logger.info("Weekly summaries created count=%d", len(ids))
        return [s.model_copy(update={"id": sid}) for s, sid in zip(summaries, ids)]

    def summarize_last_week(self, now=None):
        week_end = now or self._clock()
        return self.summarize(week_end - timedelta(days=SUMMARY_WINDOW_DAYS), week_end)

    def list_summaries(self, bin_id=None, limit=None):
        filters = {"binId": bin_id} if bin_id else None
        docs = self.store.query(SUMMARIES, filters=filters, order_by="weekEnd", descending=True, limit=limit)
        return [WeeklySummary.from_document(d) for d in docs]

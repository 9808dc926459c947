"""
BinWatch — Alert Lifecycle Manager
Keeps at most one unacknowledged alert per bin and moves it through
create → update (severity change / refresh) → resolve as readings arrive.

Reconciliation for a bin is serialized through a per-bin lock, so the live
ingestion path and the simulator can share one manager without both
creating an alert. Producers in other processes cannot share the lock;
duplicates they leave behind are collapsed on the next reconciliation.
"""
import logging
import threading

from alerting.errors import InvariantViolation, NotFoundError, TransientStoreError
from alerting.levels import alert_message, clamp_percent, target_level
from alerting.models import ALERTS, Alert, to_iso, utcnow

logger = logging.getLogger(__name__)


class AlertLifecycleManager:

    def __init__(self, store, clock=None):
        self.store = store
        self._clock = clock or utcnow
        self._locks = {}  # bin_id -> Lock
        self._locks_guard = threading.Lock()

    def _bin_lock(self, bin_id):
        with self._locks_guard:
            lock = self._locks.get(bin_id)
            if lock is None:
                lock = self._locks[bin_id] = threading.Lock()
            return lock

    # ── Reads ──────────────────────────────────────────────────────────────
    def open_alerts(self, bin_id):
        """Unacknowledged alerts for a bin, newest first."""
        docs = self.store.query(
            ALERTS,
            filters={"binId": bin_id, "ack": False},
            order_by="ts",
            descending=True,
        )
        return [Alert.from_document(d) for d in docs]

    def open_alert(self, bin_id):
        alerts = self.open_alerts(bin_id)
        return alerts[0] if alerts else None

    def list_alerts(self, bin_id=None, unacknowledged_only=False, limit=None):
        filters = {}
        if bin_id:
            filters["binId"] = bin_id
        if unacknowledged_only:
            filters["ack"] = False
        docs = self.store.query(ALERTS, filters=filters, order_by="ts", descending=True, limit=limit)
        return [Alert.from_document(d) for d in docs]

    # ── Reconciliation ─────────────────────────────────────────────────────
    def reconcile(self, bin_id, percent_full):
        """
        Bring the bin's alert in line with its latest percent-full.
        Store failures abort the reconciliation and propagate as
        TransientStoreError.
        """
        pct = clamp_percent(percent_full)
        target = target_level(pct)
        with self._bin_lock(bin_id):
            try:
                self._reconcile_locked(bin_id, pct, target)
            except TransientStoreError:
                logger.error("Error managing alerts bin=%s percentFull=%s", bin_id, pct)
                raise
            except NotFoundError as e:
                # Alert vanished between read and write; the next delivery re-reads
                logger.error("Error managing alerts bin=%s percentFull=%s: %s", bin_id, pct, e)
                raise TransientStoreError(f"Alert state changed during reconcile for bin {bin_id}") from e

    def _reconcile_locked(self, bin_id, pct, target):
        open_alerts = self.open_alerts(bin_id)
        now = self._clock()
        current = open_alerts[0] if open_alerts else None
        if len(open_alerts) > 1:
            self._collapse_duplicates(bin_id, current, open_alerts[1:], now)

        if current is not None:
            if target is None:
                self.store.update(ALERTS, current.id, {
                    "ack": True,
                    "resolvedAt": to_iso(now),
                })
                logger.info("Alert resolved bin=%s percentFull=%s", bin_id, pct)
            elif current.kind != target:
                self.store.update(ALERTS, current.id, {
                    "kind": target.value,
                    "message": alert_message(bin_id, target, pct),
                    "percentFull": pct,
                    "ts": to_iso(now),
                })
                logger.info("Alert updated bin=%s from=%s to=%s percentFull=%s",
                            bin_id, current.kind.value, target.value, pct)
            else:
                self.store.update(ALERTS, current.id, {
                    "message": alert_message(bin_id, target, pct),
                    "percentFull": pct,
                    "ts": to_iso(now),
                })
                logger.debug("Alert refreshed bin=%s kind=%s percentFull=%s", bin_id, target.value, pct)
        elif target is not None:
            alert = Alert(
                bin_id=bin_id,
                kind=target,
                message=alert_message(bin_id, target, pct),
                percent_full=pct,
                ts=now,
                ack=False,
                created_at=now,
            )
            alert_id = self.store.add(ALERTS, alert.to_document())
            logger.info("New alert created bin=%s kind=%s percentFull=%s id=%s",
                        bin_id, target.value, pct, alert_id)

    def _collapse_duplicates(self, bin_id, keep, duplicates, now):
        """Resolve every unacknowledged alert except the newest."""
        violation = InvariantViolation(bin_id, [keep.id] + [d.id for d in duplicates])
        logger.warning("%s; keeping %s", violation, keep.id)
        for dup in duplicates:
            self.store.update(ALERTS, dup.id, {
                "ack": True,
                "resolvedAt": to_iso(now),
                "supersededBy": keep.id,
            })

    # ── Operator action ────────────────────────────────────────────────────
    def acknowledge(self, alert_id, user_id=None):
        """Operator acknowledgement: ack=true, resolvedAt left unset."""
        doc = self.store.get(ALERTS, alert_id)
        if doc is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        alert = Alert.from_document(doc)
        with self._bin_lock(alert.bin_id):
            fields = {"ack": True}
            if user_id:
                fields["ackedBy"] = user_id
            self.store.update(ALERTS, alert_id, fields)
        logger.info("Alert acknowledged id=%s bin=%s by=%s", alert_id, alert.bin_id, user_id)
        return alert.model_copy(update={"ack": True, "acked_by": user_id or alert.acked_by})

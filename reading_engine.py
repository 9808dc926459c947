"""
BinWatch — Pathway Reading Engine
==================================
Out-of-process reading-created trigger.

Responsibilities:
  - Watch the readings collection directory of the JSON store
  - Run the Reading Processor on every reading not yet processed or skipped
  - Sweep pending readings on a timer (catches files Pathway missed or
    readings whose processing failed)
  - Log every trigger result to data/output/pw_readings_log.jsonl

Run alongside the API with INLINE_PROCESSING=false, against the same
STORE_DIR.
"""
import json
import logging
import os
import threading
import time

import pathway as pw

from alerting.errors import BinWatchError
from alerting.models import READINGS
from alerting.processor import ReadingProcessor
from alerting.registry import BinRegistry
from config.settings import LOG_FORMAT, LOG_LEVEL, OUTPUT_DIR, PENDING_SWEEP_SEC, STORE_DIR
from storage.documents import JsonFileStore

logger = logging.getLogger("reading_engine")

_processor = None


def build_processor(root=STORE_DIR):
    global _processor
    store = JsonFileStore(root)
    registry = BinRegistry(store)
    registry.seed()
    _processor = ReadingProcessor(store, registry=registry)
    return _processor


# ═══════════════════════════════════════════════════════════════════════════
# TRIGGER (called by Pathway for every new or changed reading file)
# ═══════════════════════════════════════════════════════════════════════════
def on_reading_file(data: bytes) -> str:
    """
    Process one reading document. Readings already stamped processedAt or
    skippedReason are ignored, so the write-backs (which change the file)
    do not loop. A reading with percentFull but no processedAt had a failed
    reconciliation and is processed again.
    """
    try:
        doc = json.loads(data)
    except (ValueError, UnicodeDecodeError):
        return json.dumps({"status": "skipped", "reason": "unreadable"})
    if not isinstance(doc, dict):
        return json.dumps({"status": "skipped", "reason": "not a document"})
    if doc.get("processedAt") or doc.get("skippedReason"):
        return json.dumps({"status": "skipped", "readingId": doc.get("id"), "reason": "already handled"})

    try:
        pct = _processor.process_reading(doc)
    except BinWatchError as e:
        logger.error("Error processing reading %s: %s", doc.get("id"), e)
        return json.dumps({"status": "error", "readingId": doc.get("id"), "error": str(e)})

    if pct is None:
        return json.dumps({"status": "skipped", "readingId": doc.get("id"), "reason": "unknown bin or bad data"})
    return json.dumps({"status": "ok", "readingId": doc.get("id"), "binId": doc.get("binId"), "percentFull": pct})


# ═══════════════════════════════════════════════════════════════════════════
# PENDING SWEEP (runs alongside Pathway)
# ═══════════════════════════════════════════════════════════════════════════
def _sweep_loop():
    while True:
        time.sleep(PENDING_SWEEP_SEC)
        try:
            _processor.process_pending()
        except Exception:
            logger.exception("[Sweep] Error")


# ═══════════════════════════════════════════════════════════════════════════
# MAIN
# ═══════════════════════════════════════════════════════════════════════════
def main():
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    processor = build_processor()
    readings_dir = processor.store.collection_dir(READINGS)
    os.makedirs(readings_dir, exist_ok=True)
    os.makedirs(OUTPUT_DIR, exist_ok=True)

    logger.info("═" * 60)
    logger.info("  BinWatch — Pathway Reading Engine")
    logger.info("  Pathway %s", pw.__version__)
    logger.info("  Watching: %s", readings_dir)
    logger.info("═" * 60)

    processed = processor.process_pending()
    logger.info("  Startup sweep processed %d pending readings", processed)

    threading.Thread(target=_sweep_loop, daemon=True).start()
    logger.info("  Pending sweep started (%ss interval)", PENDING_SWEEP_SEC)

    readings = pw.io.fs.read(
        readings_dir,
        format="binary",
        mode="streaming",
        with_metadata=True,
    )
    results = readings.select(result=pw.apply(on_reading_file, pw.this.data))
    pw.io.jsonlines.write(results, os.path.join(OUTPUT_DIR, "pw_readings_log.jsonl"))

    logger.info("  ▶ Pathway pipeline running. Watching for readings...")
    pw.run()


if __name__ == "__main__":
    main()

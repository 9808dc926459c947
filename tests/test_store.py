import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from alerting.errors import NotFoundError, TransientStoreError
from storage.documents import JsonFileStore, MemoryStore, create_store

T0 = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return JsonFileStore(str(tmp_path / "store"))


def test_add_get_update(any_store):
    doc_id = any_store.add("readings", {"binId": "BIN-001", "weightKg": 1.5})

    doc = any_store.get("readings", doc_id)
    assert doc == {"id": doc_id, "binId": "BIN-001", "weightKg": 1.5}

    any_store.update("readings", doc_id, {"percentFull": 30})
    assert any_store.get("readings", doc_id)["percentFull"] == 30
    assert any_store.get("readings", "missing") is None


def test_update_missing_raises(any_store):
    with pytest.raises(NotFoundError):
        any_store.update("alerts", "missing", {"ack": True})


def test_returned_documents_are_copies(any_store):
    source = {"binId": "BIN-001", "tags": ["a"]}
    doc_id = any_store.add("readings", source)
    source["tags"].append("b")

    doc = any_store.get("readings", doc_id)
    doc["tags"].append("c")
    assert any_store.get("readings", doc_id)["tags"] == ["a"]


def test_set_uses_given_id(any_store):
    any_store.set("bins", "BIN-001", {"location": "Canteen 1"})
    assert any_store.get("bins", "BIN-001") == {"id": "BIN-001", "location": "Canteen 1"}


def test_query_filters_range_and_order(any_store):
    for i, (bin_id, ack) in enumerate([("A", False), ("B", False), ("A", True), ("A", False)]):
        any_store.add("alerts", {"binId": bin_id, "ack": ack, "ts": (T0 + timedelta(hours=i)).isoformat()})

    open_a = any_store.query("alerts", filters={"binId": "A", "ack": False}, order_by="ts", descending=True)
    assert [d["ts"] for d in open_a] == [(T0 + timedelta(hours=3)).isoformat(), T0.isoformat()]

    window = any_store.query("alerts", range_field="ts", start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=3))
    assert len(window) == 2  # end is exclusive

    newest = any_store.query("alerts", order_by="ts", descending=True, limit=1)
    assert newest[0]["binId"] == "A" and newest[0]["ts"] == (T0 + timedelta(hours=3)).isoformat()


def test_query_orders_mixed_timestamp_formats(any_store):
    any_store.add("readings", {"ts": "2026-10-18T09:00:00Z"})
    any_store.add("readings", {"ts": "2026-10-18T16:30:00+08:00"})  # 08:30 UTC
    any_store.add("readings", {"ts": "2026-10-18T08:45:00.500000+00:00"})

    ordered = [d["ts"] for d in any_store.query("readings", order_by="ts")]
    assert ordered == [
        "2026-10-18T16:30:00+08:00",
        "2026-10-18T08:45:00.500000+00:00",
        "2026-10-18T09:00:00Z",
    ]


def test_none_filter_matches_missing_field(any_store):
    pending = any_store.add("readings", {"binId": "A"})
    any_store.add("readings", {"binId": "A", "percentFull": 40})

    docs = any_store.query("readings", filters={"percentFull": None})
    assert [d["id"] for d in docs] == [pending]


def test_add_many_returns_ids_in_order(any_store):
    ids = any_store.add_many("summaries", [{"binId": "A"}, {"binId": "B"}])
    assert [any_store.get("summaries", i)["binId"] for i in ids] == ["A", "B"]


def test_subscribers_see_added_documents(any_store):
    seen = []
    any_store.subscribe("readings", seen.append)

    doc_id = any_store.add("readings", {"binId": "A"})
    any_store.add_many("readings", [{"binId": "B"}, {"binId": "C"}])
    any_store.add("alerts", {"binId": "A"})
    any_store.unsubscribe("readings", seen.append)
    any_store.add("readings", {"binId": "D"})

    assert [d["binId"] for d in seen] == ["A", "B", "C"]
    assert seen[0]["id"] == doc_id


# ═══════════════════════════════════════════════════════════════════════════
# JSON FILE STORE
# ═══════════════════════════════════════════════════════════════════════════
def test_json_store_layout(tmp_path):
    root = tmp_path / "store"
    store = JsonFileStore(str(root))
    doc_id = store.add("readings", {"binId": "BIN-001"})

    path = root / "readings" / f"{doc_id}.json"
    assert json.loads(path.read_text()) == {"binId": "BIN-001", "id": doc_id}
    assert os.listdir(root / ".tmp") == []


def test_json_store_persists_across_instances(tmp_path):
    root = str(tmp_path / "store")
    doc_id = JsonFileStore(root).add("alerts", {"ack": False})

    assert JsonFileStore(root).get("alerts", doc_id) == {"ack": False, "id": doc_id}


def test_json_store_skips_corrupt_documents(tmp_path):
    store = JsonFileStore(str(tmp_path / "store"))
    store.add("readings", {"binId": "A"})
    (tmp_path / "store" / "readings" / "broken.json").write_text("{not json")

    assert [d["binId"] for d in store.query("readings")] == ["A"]


def test_json_store_batch_failure_leaves_nothing(tmp_path, monkeypatch):
    store = JsonFileStore(str(tmp_path / "store"))
    calls = {"n": 0}
    real_write_temp = store._write_temp

    def flaky_write_temp(doc):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("disk full")
        return real_write_temp(doc)

    monkeypatch.setattr(store, "_write_temp", flaky_write_temp)

    with pytest.raises(TransientStoreError):
        store.add_many("summaries", [{"binId": "A"}, {"binId": "B"}, {"binId": "C"}])
    assert store.query("summaries") == []
    assert os.listdir(tmp_path / "store" / ".tmp") == []


def test_create_store(tmp_path):
    assert create_store("memory").backend == "memory"
    assert create_store("json", root=str(tmp_path)).backend == "json"
    with pytest.raises(ValueError):
        create_store("sqlite")


def test_json_store_commit_failure_rolls_back(tmp_path, monkeypatch):
    store = JsonFileStore(str(tmp_path / "store"))
    real_replace = os.replace
    calls = {"n": 0}

    def flaky_replace(src, dst):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("rename failed")
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", flaky_replace)

    with pytest.raises(TransientStoreError):
        store.add_many("summaries", [{"binId": "A"}, {"binId": "B"}, {"binId": "C"}])
    monkeypatch.undo()

    assert store.query("summaries") == []
    assert os.listdir(tmp_path / "store" / ".tmp") == []

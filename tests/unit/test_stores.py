from __future__ import annotations

from datetime import datetime, timezone

import pytest

from scribe.ai.pipeline.contracts import GeneratedContent, KnowledgeBaseEntry, SearchRecord
from scribe.storage.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore
from scribe.storage.local_store import SEARCH_HISTORY_KEY, LocalContentStore
from scribe.telemetry.prompt_audit import PROMPT_HISTORY_KEY, PromptAuditLog

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_memory_store_returns_copies() -> None:
  store = InMemoryKeyValueStore()
  store.set("items", [{"a": 1}])

  loaded = store.get("items")
  loaded.append({"b": 2})

  assert store.get("items") == [{"a": 1}]
  assert store.get("missing") is None
  store.remove("items")
  assert store.keys() == []


def test_json_file_store_round_trips_and_lists_keys(tmp_path) -> None:
  store = JsonFileKeyValueStore(tmp_path)
  store.set("knowledge_tasks", [{"id": "t1", "topic": "量子计算"}])

  reopened = JsonFileKeyValueStore(tmp_path)

  assert reopened.get("knowledge_tasks") == [{"id": "t1", "topic": "量子计算"}]
  assert reopened.keys() == ["knowledge_tasks"]
  assert not list(tmp_path.glob("*.tmp"))


def test_json_file_store_rejects_path_like_keys(tmp_path) -> None:
  store = JsonFileKeyValueStore(tmp_path)

  with pytest.raises(ValueError, match="Invalid storage key"):
    store.set("../escape", {})


def test_corrupt_file_reads_as_missing(tmp_path) -> None:
  (tmp_path / "prompt_history.json").write_text("{not json", encoding="utf-8")

  assert JsonFileKeyValueStore(tmp_path).get("prompt_history") is None


def test_local_store_collections(memory_store) -> None:
  contents = LocalContentStore(memory_store)
  contents.save_generated_content(GeneratedContent(id="c1", title="Doc", main_content="body"))
  contents.save_knowledge_entry(KnowledgeBaseEntry(id="k1", term="Qubit", definition="unit", source="量子计算", timestamp=NOW))
  contents.save_search_record(SearchRecord(id="s1", task_id="t1", query="q", results=["r"], timestamp=NOW))
  contents.save_search_record(SearchRecord(id="s2", task_id="t2", query="q2", results=["r2"], timestamp=NOW))

  assert contents.get_generated_content("c1").title == "Doc"
  assert contents.find_knowledge_entry(" qubit ").id == "k1"
  assert [record.id for record in contents.list_search_records(task_id="t2")] == ["s2"]
  assert contents.get_search_record("s1").query == "q"

  contents.clear_all()
  assert contents.list_generated_content() == []


def test_local_store_skips_incompatible_rows(memory_store) -> None:
  memory_store.set(SEARCH_HISTORY_KEY, [{"unexpected": True}])

  assert LocalContentStore(memory_store).list_search_records() == []


def test_audit_record_is_finalized_once(memory_store) -> None:
  audit = PromptAuditLog(memory_store)
  record = audit.start(prompt="p", model="m", task_id="t1", timestamp=NOW)
  assert audit.get(record.id).status == "pending"

  first = audit.finalize(record.id, response="ok", status="success", completed_at=NOW)
  second = audit.finalize(record.id, response="late", status="error", completed_at=NOW)

  assert first.status == second.status == "success"
  assert audit.get(record.id).response == "ok"
  assert [item.id for item in audit.for_task("t1")] == [record.id]


def test_audit_rejects_pending_finalization(memory_store) -> None:
  audit = PromptAuditLog(memory_store)
  record = audit.start(prompt="p", model="m", task_id=None, timestamp=NOW)

  with pytest.raises(ValueError):
    audit.finalize(record.id, response="", status="pending", completed_at=NOW)


def test_audit_log_evicts_oldest_records(memory_store) -> None:
  audit = PromptAuditLog(memory_store, max_records=3)
  ids = [audit.start(prompt=f"p{index}", model="m", task_id=None, timestamp=NOW).id for index in range(5)]

  assert [record.id for record in audit.list_records()] == ids[-3:]
  assert audit.finalize(ids[0], response="gone", status="success", completed_at=NOW) is None

  audit.clear()
  assert memory_store.get(PROMPT_HISTORY_KEY) is None


def test_audit_log_reads_the_store_once_and_writes_through(memory_store) -> None:
  audit = PromptAuditLog(memory_store)
  first = audit.start(prompt="p1", model="m", task_id="t1", timestamp=NOW)
  memory_store.get = lambda key: pytest.fail(f"unexpected re-read of {key}")

  second = audit.start(prompt="p2", model="m", task_id="t1", timestamp=NOW)
  audit.finalize(first.id, response="ok", status="success", completed_at=NOW)

  del memory_store.get
  rows = memory_store.get(PROMPT_HISTORY_KEY)
  assert [row["id"] for row in rows] == [first.id, second.id]
  assert [row["status"] for row in rows] == ["success", "pending"]
  assert PromptAuditLog(memory_store).get(first.id).response == "ok"

"""Audit log of every model call, persisted to the key-value store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from scribe.storage.kv_store import KeyValueStore
from scribe.utils.ids import generate_record_id

PromptStatus = Literal["pending", "success", "error", "timeout"]

PROMPT_HISTORY_KEY = "prompt_history"
DEFAULT_MAX_RECORDS = 1000

logger = logging.getLogger(__name__)


class PromptRecord(BaseModel):
  """One audit entry for a single logical model call."""

  id: str
  task_id: str | None = None
  prompt: str
  timestamp: datetime
  model: str
  response: str | None = None
  status: PromptStatus = "pending"
  completed_at: datetime | None = None
  metadata: dict[str, Any] = Field(default_factory=dict)


class PromptAuditLog:
  """Append-only, size-capped log of PromptRecords.

  A record is written as `pending` before the network call and finalized at
  most once afterwards. When the log exceeds `max_records` the oldest entries
  are evicted. The log is read from the store once; afterwards the in-memory
  copy is authoritative and each change writes it through.
  """

  def __init__(self, store: KeyValueStore, *, max_records: int = DEFAULT_MAX_RECORDS) -> None:
    self._store = store
    self._max_records = max_records
    self._records: dict[str, PromptRecord] | None = None
    # Serialized rows, kept in step with _records so a write only dumps the changed record.
    self._rows: dict[str, dict[str, Any]] = {}

  def _loaded(self) -> dict[str, PromptRecord]:
    if self._records is None:
      self._records = {}
      for item in self._store.get(PROMPT_HISTORY_KEY) or []:
        record = PromptRecord.model_validate(item)
        self._records[record.id] = record
        self._rows[record.id] = item
    return self._records

  def _put(self, record: PromptRecord) -> None:
    records = self._loaded()
    records[record.id] = record
    self._rows[record.id] = record.model_dump(mode="json")
    # Keep the newest entries only.
    while len(records) > self._max_records:
      oldest = next(iter(records))
      del records[oldest]
      del self._rows[oldest]
    self._store.set(PROMPT_HISTORY_KEY, list(self._rows.values()))

  def start(self, *, prompt: str, model: str, task_id: str | None, timestamp: datetime, metadata: dict[str, Any] | None = None) -> PromptRecord:
    """Append a pending record before the call is issued."""
    record = PromptRecord(id=generate_record_id(), task_id=task_id, prompt=prompt, timestamp=timestamp, model=model, metadata=metadata or {})
    self._put(record)
    return record

  def finalize(self, record_id: str, *, response: str, status: PromptStatus, completed_at: datetime) -> PromptRecord | None:
    """Attach the terminal response and status; later calls for the same record are ignored."""
    if status == "pending":
      raise ValueError("A prompt record cannot be finalized as pending")
    record = self._loaded().get(record_id)
    if record is None:
      # Evicted before completion; nothing to update.
      logger.debug("Prompt record %s no longer in the log", record_id)
      return None
    if record.status != "pending":
      logger.warning("Prompt record %s already finalized as %s", record_id, record.status)
      return record
    updated = record.model_copy(update={"response": response, "status": status, "completed_at": completed_at})
    self._put(updated)
    return updated

  def list_records(self) -> list[PromptRecord]:
    return list(self._loaded().values())

  def get(self, record_id: str) -> PromptRecord | None:
    return self._loaded().get(record_id)

  def for_task(self, task_id: str) -> list[PromptRecord]:
    return [record for record in self._loaded().values() if record.task_id == task_id]

  def clear(self) -> None:
    self._records = {}
    self._rows = {}
    self._store.remove(PROMPT_HISTORY_KEY)

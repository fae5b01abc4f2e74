"""Collections of generated content kept in the key-value store."""

from __future__ import annotations

import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from scribe.ai.pipeline.contracts import GeneratedContent, GenerationHistoryEntry, KnowledgeBaseEntry, SearchRecord
from scribe.storage.kv_store import KeyValueStore

CONTENT_KEY = "knowledge_content_generated"
KNOWLEDGE_BASE_KEY = "knowledge_base_entries"
GENERATION_HISTORY_KEY = "generation_history"
SEARCH_HISTORY_KEY = "search_history"

M = TypeVar("M", bound=BaseModel)

logger = logging.getLogger(__name__)


class LocalContentStore:
  """Typed list-per-key collections: generated documents, glossary entries, runs and searches."""

  def __init__(self, store: KeyValueStore) -> None:
    self._store = store

  def _load(self, key: str, model: type[M]) -> list[M]:
    items: list[M] = []
    for raw in self._store.get(key) or []:
      try:
        items.append(model.model_validate(raw))
      except ValidationError:
        # Rows written by an older shape are skipped rather than failing the whole list.
        logger.warning("Skipping incompatible %s row in %s", model.__name__, key)
    return items

  def _append(self, key: str, item: BaseModel) -> None:
    rows = list(self._store.get(key) or [])
    rows.append(item.model_dump(mode="json"))
    self._store.set(key, rows)

  def save_generated_content(self, content: GeneratedContent) -> None:
    self._append(CONTENT_KEY, content)

  def list_generated_content(self) -> list[GeneratedContent]:
    return self._load(CONTENT_KEY, GeneratedContent)

  def get_generated_content(self, content_id: str) -> GeneratedContent | None:
    return next((item for item in self.list_generated_content() if item.id == content_id), None)

  def save_knowledge_entry(self, entry: KnowledgeBaseEntry) -> None:
    self._append(KNOWLEDGE_BASE_KEY, entry)

  def list_knowledge_entries(self) -> list[KnowledgeBaseEntry]:
    return self._load(KNOWLEDGE_BASE_KEY, KnowledgeBaseEntry)

  def find_knowledge_entry(self, term: str) -> KnowledgeBaseEntry | None:
    wanted = term.strip().lower()
    return next((entry for entry in self.list_knowledge_entries() if entry.term.lower() == wanted), None)

  def save_generation_history(self, entry: GenerationHistoryEntry) -> None:
    self._append(GENERATION_HISTORY_KEY, entry)

  def list_generation_history(self) -> list[GenerationHistoryEntry]:
    return self._load(GENERATION_HISTORY_KEY, GenerationHistoryEntry)

  def save_search_record(self, record: SearchRecord) -> None:
    self._append(SEARCH_HISTORY_KEY, record)

  def list_search_records(self, *, task_id: str | None = None) -> list[SearchRecord]:
    records = self._load(SEARCH_HISTORY_KEY, SearchRecord)
    if task_id is None:
      return records
    return [record for record in records if record.task_id == task_id]

  def get_search_record(self, record_id: str) -> SearchRecord | None:
    return next((record for record in self._load(SEARCH_HISTORY_KEY, SearchRecord) if record.id == record_id), None)

  def clear_all(self) -> None:
    for key in (CONTENT_KEY, KNOWLEDGE_BASE_KEY, GENERATION_HISTORY_KEY, SEARCH_HISTORY_KEY):
      self._store.remove(key)

from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from scribe.storage.history_store import HistoryEntry


class HistorySaveRequest(BaseModel):
  """Body of a history save request."""

  content: Any
  title: str
  query: str | None = None
  type: str = "generated-content"


class HistorySaveResponse(BaseModel):
  entry: HistoryEntry


class HistoryContentResponse(BaseModel):
  content: Any


class ClearResponse(BaseModel):
  removed: int


class HealthResponse(BaseModel):
  status: str
  version: str
  provider: str
  history: str

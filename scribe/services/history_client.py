"""History backends: the local filesystem store or the remote history API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from scribe.storage.history_store import FilesystemHistoryStore, HistoryEntry, HistoryIndex, HistoryNotFoundError

logger = logging.getLogger(__name__)

HISTORY_API_PREFIX = "/api/history"


class HistoryUnavailableError(RuntimeError):
  """Raised when the history backend cannot be reached or rejects a request."""


class HistoryBackend(Protocol):
  """Async save/list/load/clear contract shared by local and remote history."""

  async def save(self, content: Any, *, title: str, query: str | None = None, entry_type: str = "generated-content") -> HistoryEntry:
    """Persist one item and return its index row."""

  async def index(self) -> HistoryIndex:
    """Return every entry, newest first, plus session grouping."""

  async def load(self, entry_id: str) -> Any:
    """Return the stored content of one entry."""

  async def clear(self) -> int:
    """Delete every entry and return how many were removed."""


class LocalHistoryBackend:
  """Runs the filesystem store off the event loop."""

  def __init__(self, store: FilesystemHistoryStore) -> None:
    self._store = store

  async def save(self, content: Any, *, title: str, query: str | None = None, entry_type: str = "generated-content") -> HistoryEntry:
    try:
      return await asyncio.to_thread(self._store.save, content, title=title, query=query, entry_type=entry_type)
    except OSError as exc:
      raise HistoryUnavailableError(f"Failed to write history entry: {exc}") from exc

  async def index(self) -> HistoryIndex:
    return await asyncio.to_thread(self._store.index)

  async def load(self, entry_id: str) -> Any:
    return await asyncio.to_thread(self._store.load, entry_id)

  async def clear(self) -> int:
    return await asyncio.to_thread(self._store.clear)


class HistoryClient:
  """httpx client for the history HTTP API."""

  def __init__(self, base_url: str, *, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._timeout = timeout
    self._transport = transport

  def _build_client(self) -> httpx.AsyncClient:
    # History traffic is internal; environment proxies are ignored.
    return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport, trust_env=False)

  async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
    url = f"{HISTORY_API_PREFIX}{path}"
    try:
      async with self._build_client() as client:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
      if exc.response.status_code == 404:
        raise HistoryNotFoundError(path.rsplit("/", 1)[-1]) from exc
      logger.error("History API %s %s returned %s: %s", method, url, exc.response.status_code, exc.response.text)
      raise HistoryUnavailableError(f"History API returned {exc.response.status_code}") from exc
    except httpx.RequestError as exc:
      logger.error("History API %s %s failed: %s", method, url, exc)
      raise HistoryUnavailableError(f"History API unreachable: {exc}") from exc

  async def save(self, content: Any, *, title: str, query: str | None = None, entry_type: str = "generated-content") -> HistoryEntry:
    payload = await self._request("POST", "/save", json={"content": content, "title": title, "query": query, "type": entry_type})
    return HistoryEntry.model_validate(payload["entry"])

  async def index(self) -> HistoryIndex:
    payload = await self._request("GET", "/index")
    return HistoryIndex.model_validate({"history": payload.get("history", []), "sessions": payload.get("sessions", [])})

  async def load(self, entry_id: str) -> Any:
    payload = await self._request("GET", f"/load/{entry_id}")
    return payload.get("content")

  async def clear(self) -> int:
    payload = await self._request("DELETE", "/clear")
    return int(payload.get("removed", 0))

"""Filesystem-backed history of generated documents and prompt records."""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from scribe.utils.text import sanitize_file_name

logger = logging.getLogger(__name__)

SESSION_GAP = timedelta(minutes=30)
DEFAULT_QUERY_FOLDER = "general"
_ENTRY_ID_RE = re.compile(r"^[A-Za-z0-9_\-\u4e00-\u9fa5]+$")


class HistoryNotFoundError(LookupError):
  """Raised when a history entry id does not resolve to a file."""

  def __init__(self, entry_id: str) -> None:
    super().__init__(f"History entry {entry_id} not found")
    self.entry_id = entry_id


class HistoryEntry(BaseModel):
  """Index row describing one saved history file."""

  id: str
  title: str
  timestamp: datetime
  file_path: str
  type: str = "generated-content"
  query_folder: str = DEFAULT_QUERY_FOLDER
  content_preview: str = ""


class HistorySession(BaseModel):
  """Entries saved close together in time."""

  id: str
  title: str
  start_time: datetime
  end_time: datetime
  tasks: list[HistoryEntry] = Field(default_factory=list)


class HistoryIndex(BaseModel):
  history: list[HistoryEntry] = Field(default_factory=list)
  sessions: list[HistorySession] = Field(default_factory=list)


def _preview_of(content: Any) -> str:
  if isinstance(content, dict):
    main = content.get("main_content") or content.get("mainContent") or content.get("response")
    if isinstance(main, str):
      return main[:100]
  if isinstance(content, str):
    return content[:100]
  return "No preview"


def group_sessions(entries: list[HistoryEntry], *, gap: timedelta = SESSION_GAP) -> list[HistorySession]:
  """Group newest-first entries into sessions separated by more than `gap`."""
  sessions: list[HistorySession] = []
  for entry in entries:
    current = sessions[-1] if sessions else None
    # Entries arrive newest first, so the session's oldest entry is the comparison point.
    if current is not None and current.start_time - entry.timestamp < gap:
      current.tasks.append(entry)
      current.start_time = min(current.start_time, entry.timestamp)
      continue
    sessions.append(
      HistorySession(
        id=f"session-{int(entry.timestamp.timestamp() * 1000)}",
        title=f"会话 {entry.timestamp.strftime('%Y/%m/%d %H:%M')}",
        start_time=entry.timestamp,
        end_time=entry.timestamp,
        tasks=[entry],
      )
    )
  return sessions


class FilesystemHistoryStore:
  """Stores each saved item as `<root>/<query folder>/<epoch ms>_<title>.json`."""

  def __init__(self, root: str | Path) -> None:
    self._root = Path(root).expanduser()
    self._root.mkdir(parents=True, exist_ok=True)

  @property
  def root(self) -> Path:
    return self._root

  def save(self, content: Any, *, title: str, query: str | None = None, entry_type: str = "generated-content") -> HistoryEntry:
    if content is None or content == "" or not title:
      raise ValueError("Content and title are required")

    now = datetime.now(UTC)
    folder_name = sanitize_file_name(query, max_length=80) if query else DEFAULT_QUERY_FOLDER
    folder = self._root / folder_name
    folder.mkdir(parents=True, exist_ok=True)

    base_id = f"{int(now.timestamp() * 1000)}_{sanitize_file_name(title, max_length=50)}"
    entry_id = base_id
    suffix = 1
    while (folder / f"{entry_id}.json").exists():
      entry_id = f"{base_id}_{suffix}"
      suffix += 1

    path = folder / f"{entry_id}.json"
    envelope = {"id": entry_id, "title": title, "query": query, "type": entry_type, "timestamp": now.isoformat(), "content": content}
    path.write_text(json.dumps(envelope, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("Saved history entry %s to %s", entry_id, path)
    return HistoryEntry(id=entry_id, title=title, timestamp=now, file_path=str(path), type=entry_type, query_folder=folder_name, content_preview=_preview_of(content))

  def index(self) -> HistoryIndex:
    entries = [self._describe(path) for path in self._root.glob("*/*.json")]
    entries.sort(key=lambda entry: entry.timestamp, reverse=True)
    return HistoryIndex(history=entries, sessions=group_sessions(entries))

  def path_for(self, entry_id: str) -> Path:
    """Resolve an entry id to its file, rejecting anything that could escape the root."""
    if not _ENTRY_ID_RE.match(entry_id):
      raise HistoryNotFoundError(entry_id)
    matches = sorted(self._root.glob(f"*/{entry_id}.json"))
    if not matches:
      raise HistoryNotFoundError(entry_id)
    return matches[0]

  def load(self, entry_id: str) -> Any:
    path = self.path_for(entry_id)
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict) and "content" in payload:
      return payload["content"]
    return payload

  def clear(self) -> int:
    removed = 0
    for path in self._root.glob("*/*.json"):
      path.unlink(missing_ok=True)
      removed += 1
    for folder in self._root.iterdir():
      if folder.is_dir() and not any(folder.iterdir()):
        folder.rmdir()
    logger.info("Cleared %d history entries from %s", removed, self._root)
    return removed

  def _describe(self, path: Path) -> HistoryEntry:
    stat = path.stat()
    fallback_time = datetime.fromtimestamp(stat.st_mtime, UTC)
    try:
      payload = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
      logger.warning("Unreadable history file %s", path)
      return HistoryEntry(id=path.stem, title="Unknown Content", timestamp=fallback_time, file_path=str(path), query_folder=path.parent.name)

    if not isinstance(payload, dict):
      payload = {"content": payload}
    try:
      timestamp = datetime.fromisoformat(payload["timestamp"])
    except (KeyError, TypeError, ValueError):
      timestamp = fallback_time
    title = payload.get("title") or path.stem.partition("_")[2] or path.stem
    return HistoryEntry(
      id=path.stem,
      title=title,
      timestamp=timestamp,
      file_path=str(path),
      type=payload.get("type") or "generated-content",
      query_folder=path.parent.name,
      content_preview=_preview_of(payload.get("content")),
    )

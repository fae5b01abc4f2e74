"""Key-value storage for JSON blobs keyed by collection name."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

import msgspec

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
  """Repository contract for JSON-serializable blobs."""

  def get(self, key: str) -> Any | None:
    """Return the stored value or None when the key is absent."""

  def set(self, key: str, value: Any) -> None:
    """Replace the value stored under the key."""

  def remove(self, key: str) -> None:
    """Delete the key if present."""

  def keys(self) -> list[str]:
    """List stored keys."""


class InMemoryKeyValueStore:
  """Process-local store used by tests and one-shot CLI runs."""

  def __init__(self) -> None:
    self._data: dict[str, bytes] = {}

  def get(self, key: str) -> Any | None:
    raw = self._data.get(key)
    if raw is None:
      return None
    # Round-trip through JSON so callers never share mutable state with the store.
    return msgspec.json.decode(raw)

  def set(self, key: str, value: Any) -> None:
    self._data[key] = msgspec.json.encode(value)

  def remove(self, key: str) -> None:
    self._data.pop(key, None)

  def keys(self) -> list[str]:
    return sorted(self._data)


class JsonFileKeyValueStore:
  """One JSON file per key under a root directory, replaced atomically on write."""

  def __init__(self, root: str | Path) -> None:
    self._root = Path(root).expanduser()
    self._root.mkdir(parents=True, exist_ok=True)

  @property
  def root(self) -> Path:
    return self._root

  def _path(self, key: str) -> Path:
    if not _KEY_RE.match(key):
      raise ValueError(f"Invalid storage key: {key!r}")
    return self._root / f"{key}.json"

  def get(self, key: str) -> Any | None:
    path = self._path(key)
    if not path.is_file():
      return None
    try:
      return msgspec.json.decode(path.read_bytes())
    except msgspec.DecodeError:
      # A corrupt blob reads as empty so the caller can rebuild the collection.
      logger.warning("Discarding unreadable store entry %s", path, exc_info=True)
      return None

  def set(self, key: str, value: Any) -> None:
    path = self._path(key)
    payload = msgspec.json.format(msgspec.json.encode(value), indent=2)
    fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=f".{key}.", suffix=".tmp")
    try:
      with os.fdopen(fd, "wb") as handle:
        handle.write(payload)
      os.replace(tmp_name, path)
    except BaseException:
      Path(tmp_name).unlink(missing_ok=True)
      raise

  def remove(self, key: str) -> None:
    self._path(key).unlink(missing_ok=True)

  def keys(self) -> list[str]:
    return sorted(path.stem for path in self._root.glob("*.json"))

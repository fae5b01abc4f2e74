"""Small text helpers shared by the pipeline and the stores."""

from __future__ import annotations

import re

_FILENAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5\-_]")
_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def sanitize_file_name(name: str, *, max_length: int = 100) -> str:
  """Replace characters outside ASCII letters, digits, CJK, '-' and '_' with underscores."""
  return _FILENAME_UNSAFE_RE.sub("_", name)[:max_length]


def strip_json_fences(raw: str) -> str:
  """Remove surrounding markdown code fences from a model reply."""
  return _JSON_FENCE_RE.sub("", raw.strip()).strip()

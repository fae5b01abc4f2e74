"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_task_id() -> str:
  """Return a new task identifier."""
  return str(uuid.uuid4())


def generate_content_id() -> str:
  """Return a new generated-content identifier."""
  return str(uuid.uuid4())


def generate_record_id() -> str:
  """Return a new identifier for audit and store records."""
  return str(uuid.uuid4())

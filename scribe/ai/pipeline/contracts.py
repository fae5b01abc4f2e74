"""Shared data contracts for the AI pipeline."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Depth = Literal["shallow", "medium", "deep"]
Style = Literal["formal", "casual", "technical"]
Audience = Literal["beginner", "intermediate", "expert"]
DifficultyLevel = Literal["high", "medium", "low"]
ProgressStatus = Literal["in_progress", "completed", "error"]

MIN_WORD_COUNT = 100


def utc_now() -> datetime:
  return datetime.now(UTC)


class GenerationConfig(BaseModel):
  """Inputs for one article generation run."""

  topic: str = Field(min_length=1)
  depth: Depth = "medium"
  style: Style = "formal"
  target_audience: Audience = "beginner"
  word_count: int | None = Field(default=None, ge=MIN_WORD_COUNT)
  include_examples: bool = True
  enable_keyword_extraction: bool = True
  enable_validation: bool = False
  model: str | None = None

  @field_validator("topic")
  @classmethod
  def _topic_not_blank(cls, value: str) -> str:
    stripped = value.strip()
    if not stripped:
      raise ValueError("Topic must not be empty")
    return stripped


class ProgressStep(BaseModel):
  """One progress snapshot emitted during a run."""

  step: str
  current: int = Field(ge=0)
  total: int = Field(ge=1)
  status: ProgressStatus = "in_progress"
  detail: str | None = None
  timestamp: datetime = Field(default_factory=utc_now)


class ExtractedConcept(BaseModel):
  """A difficult term found in generated content."""

  term: str
  location: str = ""
  difficulty: DifficultyLevel = "medium"
  brief_description: str = ""


class KnowledgeBaseEntry(BaseModel):
  """One explained term belonging to a generated document."""

  id: str
  term: str
  definition: str
  context: str = ""
  related_terms: list[str] = Field(default_factory=list)
  source: str = ""
  timestamp: datetime = Field(default_factory=utc_now)
  difficulty: DifficultyLevel = "medium"


class ContentNode(BaseModel):
  """Node of the outline tree rendered by clients."""

  id: str
  title: str
  content: str
  children: list[ContentNode] = Field(default_factory=list)
  details: list[str] = Field(default_factory=list)
  expanded: bool = True


class GeneratedContent(BaseModel):
  """Final artifact of one workflow run."""

  model_config = ConfigDict(frozen=True)

  id: str
  title: str
  main_content: str
  nodes: list[ContentNode] = Field(default_factory=list)
  knowledge_base: list[KnowledgeBaseEntry] = Field(default_factory=list)
  timestamp: datetime = Field(default_factory=utc_now)
  generation_steps: list[str] = Field(default_factory=list)
  progress: list[ProgressStep] = Field(default_factory=list)


class RewrittenPrompt(BaseModel):
  """Reformulated topic and the derived document title."""

  prompt: str
  title: str


class SearchRecord(BaseModel):
  """Results of one simulated search query."""

  id: str
  query: str
  results: list[str] = Field(default_factory=list)
  timestamp: datetime = Field(default_factory=utc_now)
  task_id: str | None = None
  failed: bool = False


class SectionResult(BaseModel):
  """Generated body of one article section."""

  index: int = Field(ge=0)
  title: str
  content: str
  failed: bool = False


class GenerationHistoryEntry(BaseModel):
  """Summary row for the generation history collection."""

  id: str
  content_id: str
  title: str
  topic: str
  knowledge_base_size: int = 0
  task_id: str | None = None
  timestamp: datetime = Field(default_factory=utc_now)

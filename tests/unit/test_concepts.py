from __future__ import annotations

import json

import pytest

from scribe.ai.backoff import RetryPolicy, fixed_delay
from scribe.ai.concepts import ConceptPipeline, heuristic_concepts, parse_concepts, placeholder_definition
from scribe.ai.orchestrator import build_orchestrator
from scribe.ai.pipeline.contracts import ExtractedConcept, GenerationConfig
from scribe.ai.providers.base import ModelRateLimitError

EXPLANATION = "这是一个足够详细的解释，帮助初学者理解该术语在量子计算中的作用与意义。" * 2


def test_parse_concepts_reads_fenced_json_and_drops_duplicates() -> None:
  raw = "```json\n" + json.dumps(
    {
      "complexConcepts": [
        {"term": "Qubit", "locationInContent": "intro", "difficultyLevel": "HIGH", "briefDescription": "unit"},
        {"term": "qubit", "locationInContent": "later"},
        {"term": "", "locationInContent": "nowhere"},
        "not an object",
        {"term": "Decoherence", "difficultyLevel": "extreme"},
      ]
    }
  ) + "\n```"

  concepts = parse_concepts(raw)

  assert [concept.term for concept in concepts] == ["Qubit", "Decoherence"]
  assert concepts[0].difficulty == "high"
  assert concepts[1].difficulty == "medium"


def test_heuristic_takes_first_ten_unique_capitalized_words() -> None:
  content = "Qubit and Qubit again. " + " ".join(f"Term{chr(97 + index)}x" for index in range(15)) + " ok No"

  concepts = heuristic_concepts(content)

  assert len(concepts) == 10
  assert concepts[0].term == "Qubit"
  assert len({concept.term for concept in concepts}) == 10
  assert all(concept.difficulty == "medium" for concept in concepts)


@pytest.mark.anyio
async def test_unparsable_extraction_falls_back_to_heuristic(make_client, make_provider, no_sleep) -> None:
  provider = make_provider(lambda prompt: "I could not find any terms, sorry")
  pipeline = ConceptPipeline(make_client(provider), extraction_policy=RetryPolicy(max_attempts=3, delay=fixed_delay(2.0), sleep=no_sleep))

  concepts = await pipeline.extract_concepts("量子计算", "Quantum computers use Qubits and Entanglement.")

  assert [concept.term for concept in concepts] == ["Quantum", "Qubits", "Entanglement"]
  assert len(provider.prompts) == 3
  assert [call.args[0] for call in no_sleep.await_args_list] == [2.0, 2.0]


@pytest.mark.anyio
async def test_extraction_retries_after_an_unparsable_reply(make_client, make_provider, no_sleep) -> None:
  replies = iter(["not json", json.dumps({"complexConcepts": [{"term": "Qubit", "difficultyLevel": "high"}]})])
  provider = make_provider(lambda prompt: next(replies))
  pipeline = ConceptPipeline(make_client(provider), extraction_policy=RetryPolicy(max_attempts=3, delay=fixed_delay(2.0), sleep=no_sleep))

  concepts = await pipeline.extract_concepts("量子计算", "Quantum computers use Qubits and Entanglement.")

  assert [concept.term for concept in concepts] == ["Qubit"]
  assert len(provider.prompts) == 2


@pytest.mark.anyio
async def test_workflow_extraction_recovers_from_one_bad_reply(settings, make_client, make_provider, no_sleep, prompt_stage, pipeline_responder) -> None:
  extraction_calls: list[str] = []

  def _responder(prompt: str) -> str:
    if prompt_stage(prompt) == "extraction":
      extraction_calls.append(prompt)
      if len(extraction_calls) == 1:
        return "not json"
    return pipeline_responder(prompt)

  orchestrator = build_orchestrator(settings, make_client(make_provider(_responder)), sleep=no_sleep)

  content = await orchestrator.execute_full_workflow(GenerationConfig(topic="量子计算"))

  assert len(extraction_calls) == 2
  assert [entry.term for entry in content.knowledge_base] == ["Qubit", "Superposition"]


@pytest.mark.anyio
async def test_extraction_truncates_content(make_client, make_provider) -> None:
  provider = make_provider(lambda prompt: json.dumps({"complexConcepts": [{"term": "Qubit"}]}))
  pipeline = ConceptPipeline(make_client(provider))

  await pipeline.extract_concepts("topic", "x" * 25000 + "TAILMARKER")

  assert "TAILMARKER" not in provider.prompts[0]
  assert "x" * 20000 in provider.prompts[0]


@pytest.mark.anyio
async def test_expansion_preserves_order_and_isolates_failures(make_client, make_provider, no_sleep) -> None:
  def _responder(prompt: str) -> str:
    return "short" if '"Decoherence"' in prompt else EXPLANATION

  provider = make_provider(_responder)
  pipeline = ConceptPipeline(make_client(provider), expansion_policy=RetryPolicy(max_attempts=3, delay=fixed_delay(1.0), sleep=no_sleep))
  concepts = [ExtractedConcept(term=term, location="body") for term in ("Qubit", "Decoherence", "Entanglement")]
  progress: list[int] = []

  entries = await pipeline.expand_concepts(concepts, "量子计算", "content", on_entry=lambda entry, done: progress.append(done))

  assert [entry.term for entry in entries] == ["Qubit", "Decoherence", "Entanglement"]
  assert entries[1].definition == placeholder_definition("Decoherence")
  assert entries[0].definition == EXPLANATION
  assert entries[0].source == "量子计算"
  assert progress == [1, 2, 3]
  assert [call.args[0] for call in no_sleep.await_args_list] == [1.0, 1.0]


@pytest.mark.anyio
async def test_rate_limited_terms_are_dropped(make_client, make_provider, no_sleep) -> None:
  def _responder(prompt: str):
    if '"Qubit"' in prompt:
      return ModelRateLimitError("429")
    return EXPLANATION

  provider = make_provider(_responder)
  pipeline = ConceptPipeline(make_client(provider), expansion_policy=RetryPolicy(max_attempts=3, delay=fixed_delay(0.0), sleep=no_sleep))
  concepts = [ExtractedConcept(term="Qubit"), ExtractedConcept(term="Entanglement")]

  entries = await pipeline.expand_concepts(concepts, "topic", "content")

  assert [entry.term for entry in entries] == ["Entanglement"]
  # One logical call with three retries, and no further term-level attempts.
  assert sum(1 for prompt in provider.prompts if '"Qubit"' in prompt) == 4

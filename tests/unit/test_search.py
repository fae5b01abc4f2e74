from __future__ import annotations

import json

import pytest

from scribe.ai.providers.base import ModelTimeoutError
from scribe.ai.search import SearchError, SearchService, clean_search_query, flatten_search_payload


@pytest.mark.parametrize(
  ("raw", "expected"),
  [
    ('"量子计算 定义"', "量子计算 定义"),
    ("- 量子纠缠 **应用**", "量子纠缠"),
    ("主题：量子退火\n其他说明", "量子退火"),
    ("   ", "general search"),
  ],
)
def test_clean_search_query(raw: str, expected: str) -> None:
  assert clean_search_query(raw) == expected


def test_long_queries_are_shortened() -> None:
  sentence = "Quantum error correction protects logical qubits. " + "More detail follows here " * 10
  assert clean_search_query(sentence) == "Quantum error correction protects logical qubits"

  run_on = "word " * 40
  assert clean_search_query(run_on) == " ".join(["word"] * 8)


def test_flatten_search_payload_keeps_category_order() -> None:
  raw = json.dumps({"applications": ["cryptography"], "concepts": ["qubit", " "], "unrelated": ["ignored"]})

  assert flatten_search_payload(raw) == ["qubit", "cryptography"]


def test_flatten_search_payload_falls_back_to_lines() -> None:
  assert flatten_search_payload("first finding\n\n second finding ") == ["first finding", "second finding"]


@pytest.mark.anyio
async def test_search_returns_flattened_results(make_client, make_provider) -> None:
  provider = make_provider(lambda prompt: json.dumps({"concepts": ["a"], "trends": ["b"]}))

  results = await SearchService(make_client(provider)).search("量子计算")

  assert results == ["a", "b"]
  assert '"量子计算"' in provider.prompts[0]


@pytest.mark.anyio
async def test_search_raises_on_error_result(make_client, make_provider) -> None:
  provider = make_provider(lambda prompt: ModelTimeoutError("slow"))

  with pytest.raises(SearchError, match="Request timeout"):
    await SearchService(make_client(provider)).search("query")

"""Tests for the LLM memory extractor and the rolling-summary helper."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from agent_memory.core.exceptions import EngineError, ExtractionFailure
from agent_memory.memory.extraction import LLMMemoryExtractor
from agent_memory.memory.memory_records import MemoryType
from agent_memory.memory.namespace import Namespace
from agent_memory.memory.summarizer import ConversationSummarizer

ALICE = Namespace.for_user("alice")


class DummyBrain:
    def __init__(self, reply: str = "[]") -> None:
        self.reply = reply
        self.prompts = []
        self.kwargs = []

    def generate_text(self, prompt: str, **kwargs):  # noqa: ANN003, ANN201
        self.prompts.append(prompt)
        self.kwargs.append(kwargs)
        return SimpleNamespace(text=self.reply, metadata={})


class FailingBrain:
    def generate_text(self, prompt: str, **kwargs):  # noqa: ANN003, ANN201
        raise EngineError("quota exhausted")


def test_extract_renders_prompt_and_parses_reply():
    brain = DummyBrain(
        '[{"content": "Alice is vegetarian", "importance": 0.9, "type": "preference"},'
        ' {"content": "Alice works at Acme", "importance": "0.7", "type": "fact"}]'
    )
    extractor = LLMMemoryExtractor(brain)

    memories = extractor.extract(ALICE, "User: I'm vegetarian and work at Acme")

    assert [memory.content for memory in memories] == ["Alice is vegetarian", "Alice works at Acme"]
    assert memories[0].type is MemoryType.PREFERENCE
    assert memories[1].importance == pytest.approx(0.7)
    prompt = brain.prompts[0]
    assert "User: I'm vegetarian and work at Acme" in prompt
    assert '"episode"' in prompt
    assert "{{" not in prompt
    assert brain.kwargs[0]["temperature"] == 0.2


def test_extract_skips_blank_transcript():
    brain = DummyBrain()

    assert LLMMemoryExtractor(brain).extract(ALICE, "   ") == []
    assert brain.prompts == []


def test_extract_wraps_engine_errors():
    with pytest.raises(ExtractionFailure):
        LLMMemoryExtractor(FailingBrain()).extract(ALICE, "User: hello")


def test_parse_response_handles_code_fences_and_noise():
    extractor = LLMMemoryExtractor(DummyBrain())

    memories = extractor.parse_response(
        'Here you go:\n```json\n[{"content": "Likes hiking", "importance": 3, "type": "Hobby"}]\n```'
    )

    assert len(memories) == 1
    assert memories[0].content == "Likes hiking"
    assert memories[0].importance == 1.0
    assert memories[0].type is None


@pytest.mark.parametrize(
    "reply",
    [
        "",
        "nothing to remember",
        "[{broken json",
        '{"content": "not a list"}',
        "[]",
    ],
)
def test_parse_response_tolerates_malformed_output(reply):
    assert LLMMemoryExtractor(DummyBrain()).parse_response(reply) == []


def test_parse_response_skips_invalid_items():
    extractor = LLMMemoryExtractor(DummyBrain())

    memories = extractor.parse_response(
        '[{"content": "   "}, "plain string", {"content": "Kept", "importance": true}, {"importance": 0.5}]'
    )

    assert [memory.content for memory in memories] == ["Kept"]
    assert memories[0].importance is None


def test_summarizer_merges_previous_summary():
    brain = DummyBrain("- Alice is planning a trip to Japan\n")
    summarizer = ConversationSummarizer(brain, max_words=50)

    summary = summarizer.summarize("- Alice likes travel", "User: I'm going to Japan in May")

    assert summary == "- Alice is planning a trip to Japan"
    prompt = brain.prompts[0]
    assert "- Alice likes travel" in prompt
    assert "User: I'm going to Japan in May" in prompt
    assert "50 words" in prompt


def test_summarizer_ignores_empty_eviction():
    brain = DummyBrain("unused")

    assert ConversationSummarizer(brain).summarize("existing", "  ") == "existing"
    assert brain.prompts == []

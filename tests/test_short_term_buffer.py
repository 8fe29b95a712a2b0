"""Tests for the bounded short-term conversation buffer."""

from __future__ import annotations

from agent_memory.memory.conversation import Message, Role, ToolCall
from agent_memory.memory.short_term import ShortTermBuffer
from agent_memory.memory.tokens import estimate_tokens, message_tokens, truncate_to_tokens


class RecordingSummarizer:
    def __init__(self) -> None:
        self.calls = []

    def summarize(self, previous_summary: str, evicted_content: str) -> str:
        self.calls.append((previous_summary, evicted_content))
        return f"summary of {len(self.calls)} batches"


class BrokenSummarizer:
    def summarize(self, previous_summary: str, evicted_content: str) -> str:
        raise RuntimeError("model unavailable")


def test_token_estimates_round_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    call = ToolCall(id="c1", name="search", arguments='{"q": "x"}')
    assert message_tokens(Message.assistant("hi", tool_calls=(call,))) == 1 + 2 + 3


def test_truncate_marks_the_cut():
    assert truncate_to_tokens("short", 10) == "short"
    assert truncate_to_tokens("x" * 40, 2) == "xxxxxxxx\n[truncated]"


def test_message_limit_evicts_oldest():
    buffer = ShortTermBuffer(max_messages=3, max_tokens=1000)

    buffer.add_all([Message.user("A"), Message.user("B"), Message.user("C"), Message.user("D")])

    assert [message.content for message in buffer.messages] == ["B", "C", "D"]
    assert buffer.evicted_content == "User: A"
    assert len(buffer) == 3


def test_token_limit_evicts_until_within_budget():
    buffer = ShortTermBuffer(max_messages=10, max_tokens=10)

    for index in range(3):
        buffer.add(Message.user(f"message number {index:04d}"))

    assert buffer.size == 2
    assert buffer.token_count == 10
    assert buffer.evicted_content == "User: message number 0000"


def test_newest_message_is_never_evicted():
    buffer = ShortTermBuffer(max_messages=5, max_tokens=5)
    big = Message.user("x" * 100)

    buffer.add(big)

    assert buffer.messages == [big]
    assert buffer.token_count == 25


def test_system_messages_are_kept_while_others_can_go():
    buffer = ShortTermBuffer(max_messages=3, max_tokens=1000)

    buffer.add_all([Message.system("Be helpful"), Message.user("u1"), Message.assistant("a1"), Message.user("u2")])

    assert [message.role for message in buffer.messages] == [Role.SYSTEM, Role.ASSISTANT, Role.USER]
    assert "Be helpful" not in buffer.evicted_content


def test_tool_call_group_is_evicted_together():
    buffer = ShortTermBuffer(max_messages=3, max_tokens=1000)
    call = ToolCall(id="call-1", name="weather", arguments="{}")

    buffer.add_all(
        [
            Message.user("What is the weather?"),
            Message.assistant("checking weather", tool_calls=(call,)),
            Message.tool("sunny", tool_call_id="call-1"),
            Message.assistant("It is sunny."),
            Message.user("Thanks"),
        ]
    )

    assert [message.content for message in buffer.messages] == ["It is sunny.", "Thanks"]
    assert buffer.evicted_content.splitlines() == [
        "User: What is the weather?",
        "Assistant: checking weather",
        "Tool: sunny",
    ]


def test_compress_returns_same_object_when_within_budget():
    buffer = ShortTermBuffer(max_tokens=100)
    messages = [Message.user("hello"), Message.assistant("hi there")]

    assert buffer.compress(messages) is messages


def test_compress_trims_oldest_messages():
    buffer = ShortTermBuffer(max_tokens=10)
    messages = [Message.user("a" * 20), Message.assistant("b" * 20), Message.user("c" * 20)]

    compressed = buffer.compress(messages)

    assert [message.content for message in compressed] == ["b" * 20, "c" * 20]
    assert buffer.evicted_content == "User: " + "a" * 20
    assert buffer.messages == []


def test_for_model_uses_context_window():
    assert ShortTermBuffer.for_model("gpt-4").max_tokens == 6553
    assert ShortTermBuffer.for_model("openai/gpt-4o-2024-08-06").max_tokens == 102400
    assert ShortTermBuffer.for_model("some-unknown-model", ratio=0.5).max_tokens == 64000


def test_recent_messages_and_latest_exchange():
    buffer = ShortTermBuffer()
    buffer.add_all([Message.user("u1"), Message.assistant("a1"), Message.user("u2"), Message.assistant("a2")])

    assert [message.content for message in buffer.get_recent_messages(2)] == ["u2", "a2"]
    assert buffer.get_recent_messages(0) == []
    user, assistant = buffer.get_latest_exchange()
    assert (user.content, assistant.content) == ("u2", "a2")


def test_latest_exchange_skips_unanswered_user_message():
    buffer = ShortTermBuffer()
    buffer.add_all([Message.user("u1"), Message.assistant("a1"), Message.user("u2")])

    user, assistant = buffer.get_latest_exchange()

    assert (user.content, assistant.content) == ("u1", "a1")
    assert ShortTermBuffer().get_latest_exchange() is None


def test_rolling_summary_absorbs_evicted_content():
    summarizer = RecordingSummarizer()
    buffer = ShortTermBuffer(max_messages=2, summarizer=summarizer)
    buffer.add_all([Message.user("first"), Message.assistant("second"), Message.user("third")])

    summary = buffer.summarize()

    assert summary == "summary of 1 batches"
    assert summarizer.calls == [("", "User: first")]
    assert buffer.evicted_content == ""
    assert buffer.build_summary_block() == "[Conversation Memory]\nsummary of 1 batches"


def test_summarize_without_summarizer_is_noop():
    buffer = ShortTermBuffer(max_messages=1)
    buffer.add_all([Message.user("first"), Message.user("second")])

    assert buffer.summarize() == ""
    assert buffer.evicted_content == "User: first"
    assert buffer.build_summary_block() == ""


def test_failed_summary_keeps_pending_content():
    buffer = ShortTermBuffer(max_messages=1, summarizer=BrokenSummarizer())
    buffer.add_all([Message.user("first"), Message.user("second")])

    assert buffer.summarize() == ""
    assert buffer.evicted_content == "User: first"


def test_clear_resets_everything():
    buffer = ShortTermBuffer(max_messages=1, summarizer=RecordingSummarizer())
    buffer.add_all([Message.user("first"), Message.user("second")])
    buffer.summarize()

    buffer.clear()

    assert buffer.messages == []
    assert buffer.token_count == 0
    assert buffer.evicted_content == ""
    assert buffer.rolling_summary == ""


def test_eviction_preserves_insertion_order():
    buffer = ShortTermBuffer(max_messages=2, max_tokens=1000)

    buffer.add_all([Message.user("A"), Message.assistant("B"), Message.user("C"), Message.assistant("D")])

    assert buffer.evicted_content == "User: A\nAssistant: B"
    assert [message.content for message in buffer.messages] == ["C", "D"]


def test_limits_hold_after_every_insertion():
    buffer = ShortTermBuffer(max_messages=4, max_tokens=12)
    contents = ["short", "a much longer message body", "x" * 60, "tiny", "mid sized text", "y"]

    for index, content in enumerate(contents):
        factory = Message.user if index % 2 == 0 else Message.assistant
        buffer.add(factory(content))
        assert buffer.size == 1 or (buffer.size <= 4 and buffer.token_count <= 12)

"""tests/test_streaming_proxy.py

Tests for the streaming completion relay: terminal events, fallback text
and cancellation.
"""

from __future__ import annotations

# Standard Library
from unittest.mock import Mock

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.prompt_assembler import InstructionPayload
from motorchat.streaming_proxy import ProxyState, StreamingCompletionProxy

FALLBACK = "Sorry, give us a call."


@pytest.fixture
def payload() -> InstructionPayload:
    return InstructionPayload(
        system_instruction="You are Harris.",
        contents=[{"role": "user", "parts": [{"text": "hi"}]}],
    )


class TestStreamingCompletionProxy:
    """Test suite for StreamingCompletionProxy."""

    def test_deltas_then_completed(self, fake_source, payload) -> None:
        proxy = StreamingCompletionProxy(fake_source(["Hel", "lo"]), FALLBACK)
        events = list(proxy.stream(payload))

        assert [(e.kind, e.text) for e in events] == [("delta", "Hel"), ("delta", "lo"), ("completed", "")]
        assert sum(1 for e in events if e.terminal) == 1
        assert proxy.state is ProxyState.COMPLETED
        assert proxy.text == "Hello"

    def test_forwards_payload(self, fake_source, payload) -> None:
        source = fake_source(["ok"])
        list(StreamingCompletionProxy(source, FALLBACK).stream(payload))
        assert source.calls == [{"contents": payload.contents, "system_instruction": "You are Harris."}]

    def test_error_mid_stream_fails_with_fallback(self, fake_source, payload) -> None:
        proxy = StreamingCompletionProxy(fake_source(["partial "], error=RuntimeError("boom")), FALLBACK)
        events = list(proxy.stream(payload))

        assert events[-1].kind == "failed"
        assert events[-1].text == FALLBACK
        assert sum(1 for e in events if e.terminal) == 1
        assert proxy.state is ProxyState.FAILED
        assert proxy.text == FALLBACK

    def test_error_before_first_chunk(self, payload) -> None:
        source = Mock()
        source.stream_content.side_effect = ConnectionError("refused")
        events = list(StreamingCompletionProxy(source, FALLBACK).stream(payload))
        assert [(e.kind, e.text) for e in events] == [("failed", FALLBACK)]

    def test_empty_response_fails(self, fake_source, payload) -> None:
        proxy = StreamingCompletionProxy(fake_source(["", ""]), FALLBACK)
        events = list(proxy.stream(payload))
        assert [(e.kind, e.text) for e in events] == [("failed", FALLBACK)]

    def test_cancel_ends_without_terminal(self, fake_source, payload) -> None:
        proxy = StreamingCompletionProxy(fake_source(["one ", "two ", "three"]), FALLBACK)
        events = []
        for event in proxy.stream(payload):
            events.append(event)
            proxy.cancel()

        assert [e.kind for e in events] == ["delta"]
        assert proxy.cancelled
        assert proxy.state is ProxyState.FAILED

    def test_single_use(self, fake_source, payload) -> None:
        proxy = StreamingCompletionProxy(fake_source(["ok"]), FALLBACK)
        list(proxy.stream(payload))
        with pytest.raises(RuntimeError):
            list(proxy.stream(payload))

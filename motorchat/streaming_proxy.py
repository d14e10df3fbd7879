from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Literal, Protocol, Sequence

from .prompt_assembler import InstructionPayload

logger = logging.getLogger("motorchat.stream")

EventKind = Literal["delta", "completed", "failed"]


class CompletionSource(Protocol):
    def stream_content(self, contents: Sequence[dict], system_instruction: str = ...) -> Iterator[str]:
        ...


class ProxyState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamEvent:
    """One relayed item: a text delta or the single terminal marker.

    A failed terminal event carries the fallback text; consumers replace any
    partial text they have shown with it.
    """
    kind: EventKind
    text: str = ""

    @property
    def terminal(self) -> bool:
        return self.kind != "delta"


class StreamingCompletionProxy:
    """Single-use relay between a completion source and one consumer."""

    def __init__(self, source: CompletionSource, fallback_text: str) -> None:
        """Purpose: Bind the completion source and the fixed failure text.
        Inputs/Outputs: Inputs are a source exposing stream_content and the
            fallback message; no return.
        Side Effects / State: Starts in IDLE with no buffered text.
        Dependencies: CompletionSource protocol (GeminiClient in production).
        Failure Modes: None at init.
        If Removed: Turns cannot be streamed to the shopper.
        Testing Notes: Use a fake source yielding fixed deltas or raising.
        """
        self._source = source
        self._fallback_text = fallback_text
        self._state = ProxyState.IDLE
        self._cancelled = threading.Event()
        self._chunks: List[str] = []

    @property
    def state(self) -> ProxyState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def text(self) -> str:
        """Everything relayed so far (the fallback text after a failure)."""
        return "".join(self._chunks)

    def cancel(self) -> None:
        self._cancelled.set()

    def stream(self, payload: InstructionPayload) -> Iterator[StreamEvent]:
        """Purpose: Relay deltas for one payload, then one terminal event.
        Inputs/Outputs: Input is an InstructionPayload; yields StreamEvent items:
            zero or more deltas, then exactly one completed/failed event unless
            cancelled first.
        Side Effects / State: IDLE -> SENDING -> STREAMING -> COMPLETED|FAILED.
        Dependencies: CompletionSource.stream_content.
        Failure Modes: Any source error or an empty response becomes a FAILED
            terminal carrying the fallback text; the raw error is only logged.
            Partial text already relayed is replaced by the fallback in .text.
            Cancellation closes the source and ends the iterator without a
            terminal event.
        If Removed: The lifecycle controller has no token stream to parse.
        Testing Notes: Assert exactly one terminal event per call.
        """
        if self._state is not ProxyState.IDLE:
            raise RuntimeError(f"proxy already used (state={self._state.value})")
        # Open the upstream stream and pass deltas through as they arrive.
        self._state = ProxyState.SENDING
        upstream = None
        try:
            upstream = iter(
                self._source.stream_content(payload.contents, system_instruction=payload.system_instruction)
            )
            for delta in upstream:
                if self._cancelled.is_set():
                    break
                if not delta:
                    continue
                self._state = ProxyState.STREAMING
                self._chunks.append(delta)
                yield StreamEvent("delta", delta)
        except Exception as exc:
            if self._cancelled.is_set():
                self._state = ProxyState.FAILED
                return
            logger.warning("completion stream failed after %d chunks: %s", len(self._chunks), exc)
            yield from self._fail()
            return
        finally:
            close = getattr(upstream, "close", None)
            if close is not None:
                close()

        if self._cancelled.is_set():
            logger.info("completion stream cancelled after %d chunks", len(self._chunks))
            self._state = ProxyState.FAILED
            return
        if not self._chunks:
            logger.warning("completion stream ended without text")
            yield from self._fail()
            return
        self._state = ProxyState.COMPLETED
        yield StreamEvent("completed")

    def _fail(self) -> Iterator[StreamEvent]:
        self._state = ProxyState.FAILED
        self._chunks = [self._fallback_text]
        yield StreamEvent("failed", self._fallback_text)

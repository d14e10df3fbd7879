"""tests/conftest.py

Shared fixtures for the motorchat test suite. Everything runs offline: the
completion client is a scripted fake and HTTP collaborators use
httpx.MockTransport.
"""

from __future__ import annotations

# Standard Library
import threading
from datetime import date
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

# Third-Party Libraries
import pytest

# Local Modules
from motorchat.augmenter import ContextAugmenter
from motorchat.chat_pipeline import ChatPipeline
from motorchat.config import BASE_DIR, Settings
from motorchat.inventory import InventoryLoader
from motorchat.knowledge_loader import KnowledgeDocument, load_knowledge
from motorchat.lifecycle import ConversationSession
from motorchat.prompt_loader import load_prompt
from motorchat.session_store import SessionStore

FIXED_TODAY = date(2026, 10, 18)


class FakeCompletionSource:
    """Scripted stand-in for GeminiClient.

    ``chunks`` are yielded one by one; ``error`` is raised after them. When
    ``gate`` is set, each chunk waits for the event so tests can interleave calls.
    """

    def __init__(
        self,
        chunks: Sequence[str] = ("Hello there!",),
        error: Optional[Exception] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.gate = gate
        self.calls: List[dict] = []

    def stream_content(self, contents, system_instruction=None, model=None) -> Iterator[str]:
        self.calls.append({"contents": contents, "system_instruction": system_instruction})
        for chunk in self.chunks:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            yield chunk
        if self.error is not None:
            raise self.error

    def generate_content(self, contents, system_instruction=None, model=None) -> str:
        self.calls.append({"contents": contents, "system_instruction": system_instruction})
        if self.error is not None:
            raise self.error
        return "".join(self.chunks)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at the shipped resources and a temp data dir."""
    return Settings(
        gemini_api_key="test-key",
        gemini_model="gemini-2.5-flash",
        perplexity_api_key="",
        perplexity_model="sonar",
        perplexity_url="https://search.invalid/chat/completions",
        augment_timeout_sec=6,
        history_turns=4,
        financing_min_price=5000,
        max_output_tokens=600,
        temperature=0.7,
        knowledge_path=BASE_DIR / "resources" / "knowledge.json",
        inventory_path=BASE_DIR / "resources" / "inventory.json",
        prompts_dir=BASE_DIR / "prompts",
        data_dir=tmp_path / "data",
        lead_webhook_url=None,
        sms_webhook_url=None,
        alert_webhook_url=None,
        dispatch_timeout_sec=10,
    )


@pytest.fixture
def knowledge(settings: Settings) -> KnowledgeDocument:
    document, _ = load_knowledge(settings.knowledge_path)
    return document


@pytest.fixture
def inventory(settings: Settings) -> InventoryLoader:
    loader = InventoryLoader(settings.inventory_path)
    loader.load()
    return loader


@pytest.fixture
def persona(settings: Settings) -> str:
    return load_prompt(settings.prompts_dir / "system_persona.txt")


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "conversations.json")


@pytest.fixture
def make_pipeline(knowledge, inventory, persona) -> Callable[..., ChatPipeline]:
    """Factory building a pipeline around a fake source and an offline augmenter."""

    def _make(source: Optional[FakeCompletionSource] = None, augmenter=None) -> ChatPipeline:
        return ChatPipeline(
            gemini=source or FakeCompletionSource(),
            knowledge=knowledge,
            inventory=inventory,
            augmenter=augmenter or ContextAugmenter(api_key=""),
            persona_template=persona,
            clock=lambda: FIXED_TODAY,
        )

    return _make


@pytest.fixture
def make_session(make_pipeline, store) -> Callable[..., ConversationSession]:
    """Factory building a closed session on the shared temp store."""

    def _make(
        source: Optional[FakeCompletionSource] = None,
        session_id: str = "session-1",
        dispatcher=None,
    ) -> ConversationSession:
        return ConversationSession(
            session_id,
            make_pipeline(source),
            store.for_session(session_id),
            dispatcher,
        )

    return _make


@pytest.fixture
def today() -> date:
    return FIXED_TODAY


@pytest.fixture
def fake_source() -> Callable[..., FakeCompletionSource]:
    """The scripted completion source class, for tests that build their own."""
    return FakeCompletionSource

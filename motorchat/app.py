from __future__ import annotations

import json
import logging
import os
import threading
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from .augmenter import ContextAugmenter
from .chat_pipeline import ChatPipeline
from .config import Settings, load_settings
from .dispatch import CommandDispatcher
from .gemini_client import GeminiClient
from .greetings import contextual_prompts
from .inventory import InventoryLoader
from .knowledge_loader import load_knowledge
from .lifecycle import ConversationSession, OpenResult, TurnUpdate
from .models import (
    AutoSendRequest,
    ChatReply,
    ChatRequest,
    OpenRequest,
    OpenResponse,
    ReactionRequest,
    SendRequest,
)
from .prompt_assembler import PERSONA_PLACEHOLDERS
from .prompt_loader import load_prompt
from .session_store import SessionStore
from .streaming_proxy import StreamEvent

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("motorchat").setLevel(log_level)
logger = logging.getLogger("motorchat.app")

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
SSE_DONE = "data: [DONE]\n\n"
PERSONA_PROMPT = "system_persona.txt"


def _sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


def _update_event(update: TurnUpdate) -> Dict[str, Any]:
    event: Dict[str, Any] = {"type": update.kind, "message_id": update.message_id, "text": update.text}
    if update.kind == "final":
        event["commands"] = [command.model_dump() for command in update.commands]
        event["failed"] = update.failed
    return event


class SessionRegistry:
    """Live sessions keyed by id; the least recently used are disposed past the cap."""

    def __init__(self, factory: Callable[[str], ConversationSession], max_sessions: int = 500) -> None:
        self._factory = factory
        self._max_sessions = max_sessions
        self._sessions: "OrderedDict[str, ConversationSession]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    def get_or_create(self, session_id: str) -> ConversationSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = self._factory(session_id)
                self._sessions[session_id] = session
            self._sessions.move_to_end(session_id)
            evicted = []
            while len(self._sessions) > self._max_sessions:
                evicted.append(self._sessions.popitem(last=False)[1])
        for old in evicted:
            old.dispose()
        return session

    def remove(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.dispose()
        return session

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.dispose()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def create_app(
    settings: Optional[Settings] = None,
    gemini: Optional[GeminiClient] = None,
    augmenter: Optional[ContextAugmenter] = None,
    dispatcher: Optional[CommandDispatcher] = None,
    store: Optional[SessionStore] = None,
    clock: Callable[[], date] = date.today,
) -> FastAPI:
    """Purpose: Build the FastAPI app and wire every collaborator.
    Inputs/Outputs: Optional overrides for settings, completion client, augmenter,
        dispatcher, store and clock; returns a FastAPI instance.
    Side Effects / State: Loads knowledge, inventory and the persona template;
        creates the data directory.
    Dependencies: load_settings, GeminiClient, ChatPipeline, SessionStore.
    Failure Modes: Missing GEMINI_API_KEY raises ValueError; unreadable knowledge
        or inventory files raise at startup.
    If Removed: The service cannot be started.
    Testing Notes: Pass a fake completion client and tmp_path settings, then use
        fastapi.testclient.TestClient.
    """
    # Load configuration and static resources once.
    settings = settings or load_settings()
    gemini = gemini or GeminiClient(settings)
    knowledge, knowledge_meta = load_knowledge(settings.knowledge_path)
    inventory = InventoryLoader(settings.inventory_path)
    _, _, inventory_meta = inventory.load()
    logger.info(
        "knowledge=%s version=%s sha256=%s inventory=%s sha256=%s",
        knowledge_meta.file_name,
        knowledge_meta.version,
        knowledge_meta.sha256[:12],
        inventory_meta.file_name,
        inventory_meta.sha256[:12],
    )

    augmenter = augmenter or ContextAugmenter(
        api_key=settings.perplexity_api_key,
        model=settings.perplexity_model,
        url=settings.perplexity_url,
        timeout_sec=settings.augment_timeout_sec,
        service_url=str(knowledge.data.get("business", {}).get("service_url", "")),
    )
    dispatcher = dispatcher or CommandDispatcher(settings)
    if store is None:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        store = SessionStore(settings.data_dir / "conversations.json", max_sessions=500)

    pipeline = ChatPipeline(
        gemini=gemini,
        knowledge=knowledge,
        inventory=inventory,
        augmenter=augmenter,
        persona_template=load_prompt(settings.prompts_dir / PERSONA_PROMPT, required=PERSONA_PLACEHOLDERS),
        history_turns=settings.history_turns,
        financing_min_price=settings.financing_min_price,
        clock=clock,
    )
    registry = SessionRegistry(
        lambda session_id: ConversationSession(
            session_id,
            pipeline,
            store.for_session(session_id),
            dispatcher,
            financing_min_price=settings.financing_min_price,
        )
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        registry.close_all()
        augmenter.close()
        dispatcher.close()

    app = FastAPI(title="Harris Boat Works Motor Chat", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.registry = registry
    app.state.store = store

    def _session_or_404(session_id: str) -> ConversationSession:
        session = registry.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"unknown session {session_id}")
        return session

    def _open_response(session: ConversationSession, result: OpenResult) -> OpenResponse:
        return OpenResponse(
            session_id=session.session_id,
            state=result.opened_as.value,
            subject_category=result.subject_category,
            show_history_banner=result.show_history_banner,
            messages=result.messages,
            prompts=contextual_prompts(session.page, session.subject),
        )

    def _turn_stream(updates: Iterator[TurnUpdate]) -> StreamingResponse:
        def _event_generator() -> Iterator[str]:
            try:
                for update in updates:
                    yield _sse(_update_event(update))
                yield SSE_DONE
            finally:
                # A disconnect mid-body must still free the session for the next send.
                close = getattr(updates, "close", None)
                if close is not None:
                    close()

        return StreamingResponse(_event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "knowledge_version": knowledge.version,
            "motors": len(inventory.list_motors()),
            "sessions": len(registry),
        }

    @app.post("/api/chat/stream")
    def chat_stream(request: ChatRequest) -> StreamingResponse:
        """Purpose: Relay raw model deltas for a stateless turn as SSE.
        Inputs/Outputs: Input is ChatRequest; output is text/event-stream with
            data: {"delta": ...} lines and a final data: [DONE].
        Side Effects / State: One optional augmentation call and one completion stream.
        Dependencies: ChatPipeline.prepare/open_stream.
        Failure Modes: Any failure becomes one fallback delta before [DONE].
        If Removed: Clients that parse commands themselves lose the relay.
        Testing Notes: Read the body with TestClient and split on blank lines.
        """
        # Prepare inside the generator so augmentation runs off the event loop.
        def _event_generator() -> Iterator[str]:
            try:
                plan = pipeline.prepare(request.message, request.conversation_history, request.context)
                events: Iterator[StreamEvent] = pipeline.open_stream(plan).stream(plan.payload)
            except Exception as exc:
                logger.warning("relay preparation failed: %s", exc)
                events = iter([StreamEvent("failed", pipeline.fallback_text)])
            for event in events:
                if event.kind in ("delta", "failed"):
                    yield _sse({"delta": event.text})
            yield SSE_DONE

        return StreamingResponse(_event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/api/chat", response_model=ChatReply)
    def chat(request: ChatRequest) -> ChatReply:
        """Purpose: Answer a stateless turn in one blocking call.
        Inputs/Outputs: Input is ChatRequest; output is ChatReply.
        Side Effects / State: One optional augmentation call and one completion.
        Dependencies: ChatPipeline.prepare/reply.
        Failure Modes: Completion errors return the fallback reply.
        If Removed: Non-streaming clients lose their endpoint.
        Testing Notes: Post a message and check category and reply fields.
        """
        # Same preparation as streaming, blocking completion.
        plan = pipeline.prepare(request.message, request.conversation_history, request.context)
        return pipeline.reply(plan)

    @app.post("/api/sessions/{session_id}/open", response_model=OpenResponse)
    def open_session(session_id: str, request: OpenRequest) -> OpenResponse:
        session = registry.get_or_create(session_id)
        return _open_response(session, session.open(request.page, request.subject))

    @app.get("/api/sessions/{session_id}")
    def get_session(session_id: str) -> Dict[str, Any]:
        session = _session_or_404(session_id)
        return {
            "session_id": session_id,
            "state": session.state.value,
            "turn_open": session.turn_open,
            "messages": [message.model_dump() for message in session.messages],
        }

    @app.post("/api/sessions/{session_id}/send")
    def send_message(session_id: str, request: SendRequest) -> StreamingResponse:
        """Purpose: Run one session turn and stream display/final events.
        Inputs/Outputs: Input is SendRequest; output is SSE with {"type": "display"}
            events, one {"type": "final", "commands": [...]} event, then [DONE].
        Side Effects / State: Persists both messages and dispatches commands.
        Dependencies: ConversationSession.send.
        Failure Modes: A send while a turn is open streams only [DONE].
        If Removed: The chat drawer cannot talk to the assistant.
        Testing Notes: Consume the body and check the final event text.
        """
        session = _session_or_404(session_id)
        return _turn_stream(session.send(request.message, request.context))

    @app.post("/api/sessions/{session_id}/auto-send")
    def auto_send(session_id: str, request: AutoSendRequest) -> StreamingResponse:
        session = _session_or_404(session_id)
        return _turn_stream(session.auto_send(request.initial_message))

    @app.post("/api/sessions/{session_id}/reactions")
    def react(session_id: str, request: ReactionRequest) -> Dict[str, Any]:
        session = _session_or_404(session_id)
        if not session.react(request.message_id, request.reaction):
            raise HTTPException(status_code=404, detail=f"unknown message {request.message_id}")
        return {"message_id": request.message_id, "reaction": request.reaction}

    @app.post("/api/sessions/{session_id}/fresh", response_model=OpenResponse)
    def start_fresh(session_id: str) -> OpenResponse:
        session = _session_or_404(session_id)
        return _open_response(session, session.start_fresh())

    @app.delete("/api/sessions/{session_id}")
    def close_session(session_id: str) -> Dict[str, Any]:
        session = registry.remove(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"unknown session {session_id}")
        return {"session_id": session_id, "state": session.state.value}

    @app.get("/api/sessions/{session_id}/prompts")
    def prompts(session_id: str, page: Optional[str] = None) -> Dict[str, Any]:
        session = registry.get(session_id)
        current_page = page or (session.page if session else "/")
        subject = session.subject if session else None
        return {"session_id": session_id, "prompts": contextual_prompts(current_page, subject)}

    return app

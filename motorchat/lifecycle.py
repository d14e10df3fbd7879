"""Per-session conversation lifecycle.

Role:
    Owns one shopper's chat: opening (resume or start fresh), sending turns,
    reactions, starting over and closing. It ties the turn pipeline, the
    streaming proxy and the command parser to persistence and command dispatch.

State machine:
    CLOSED -> OPENING -> (RESUMING | FRESH) -> ACTIVE -> CLOSED

Turn contract:
    - At most one turn is open; send() while a turn is open returns an empty
      iterator and changes nothing.
    - The context is snapshotted at send time and never mutated afterwards.
    - Persistence writes and command dispatch run on a single-worker executor,
      so writes land in the order they were issued. Their failures are logged
      and never reach the shopper.
    - A turn interrupted by close() is discarded: not persisted, no commands
      dispatched.
    - A turn whose update stream is closed or dropped unread frees the turn
      slot; the next send() is accepted.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
import weakref
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional, Set, Tuple

from .chat_pipeline import ChatPipeline
from .command_parser import CommandChannelParser, strip_markers
from .dispatch import CommandDispatcher
from .greetings import subject_category_for_page, welcome_message
from .message_ids import MessageIdMap
from .models import CommandPayload, HistoryEntry, Message, Reaction, Role, StoredMessage, SubjectProduct, TurnContext
from .session_store import ConversationPersistence
from .streaming_proxy import StreamEvent, StreamingCompletionProxy

logger = logging.getLogger("motorchat.lifecycle")

OPEN_FLUSH_TIMEOUT_SEC = 5.0


class LifecycleState(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    RESUMING = "resuming"
    FRESH = "fresh"
    ACTIVE = "active"


@dataclass(frozen=True)
class TurnUpdate:
    """Display refresh during a turn, or the final result of the turn."""
    kind: str
    message_id: str
    text: str
    commands: Tuple[CommandPayload, ...] = ()
    failed: bool = False


@dataclass(frozen=True)
class OpenResult:
    opened_as: LifecycleState
    subject_category: str
    show_history_banner: bool
    messages: List[Message]


@dataclass
class _Turn:
    cancel: threading.Event = field(default_factory=threading.Event)
    proxy: Optional[StreamingCompletionProxy] = None


def new_local_id() -> str:
    return f"local_{uuid.uuid4().hex[:12]}"


class TurnStream:
    """Update iterator for one turn; frees the turn slot even if never iterated."""

    def __init__(self, updates: Iterator[TurnUpdate], release: Callable[[], None]) -> None:
        self._updates = updates
        self._release = weakref.finalize(self, release)

    def __iter__(self) -> "TurnStream":
        return self

    def __next__(self) -> TurnUpdate:
        return next(self._updates)

    def close(self) -> None:
        self._updates.close()
        self._release()


class ConversationSession:
    """Lifecycle controller for one chat session."""

    def __init__(
        self,
        session_id: str,
        pipeline: ChatPipeline,
        persistence: ConversationPersistence,
        dispatcher: Optional[CommandDispatcher] = None,
        financing_min_price: float = 5000,
        history_limit: int = 20,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        """Purpose: Create a closed session bound to its collaborators.
        Inputs/Outputs: Inputs are the session id, pipeline, persistence view,
            optional dispatcher, parser threshold, reload limit and executor.
        Side Effects / State: Creates a single-worker executor when none is given.
        Dependencies: ChatPipeline, ConversationPersistence, CommandDispatcher.
        Failure Modes: None at init.
        If Removed: The HTTP session routes have no controller.
        Testing Notes: Use a fake pipeline source and an in-memory SessionStore.
        """
        self.session_id = session_id
        self.state = LifecycleState.CLOSED
        self.page = "/"
        self.subject: Optional[SubjectProduct] = None
        self.subject_category = "general"
        self.show_history_banner = False
        self.messages: List[Message] = []
        self.history: List[HistoryEntry] = []
        self.ids = MessageIdMap()
        self._pipeline = pipeline
        self._persistence = persistence
        self._dispatcher = dispatcher
        self._financing_min_price = financing_min_price
        self._history_limit = history_limit
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"chat-{session_id[:8]}")
        self._lock = threading.RLock()
        self._turn: Optional[_Turn] = None
        self._welcome_id: Optional[str] = None
        self._auto_sent: Set[str] = set()
        self._pending: List[Future] = []

    @property
    def turn_open(self) -> bool:
        return self._turn is not None

    # Persistence helpers

    def _submit(self, fn: Callable[..., Any], *args: Any, on_result: Optional[Callable[[Any], None]] = None) -> Future:
        label = getattr(fn, "__name__", "task")

        # on_result runs on the worker so flush() also covers it.
        def _task() -> Any:
            result = fn(*args)
            if on_result is not None:
                on_result(result)
            return result

        def _done(done: Future) -> None:
            error = done.exception()
            if error is not None:
                logger.warning("session=%s background %s failed: %s", self.session_id, label, error)

        future = self._executor.submit(_task)
        future.add_done_callback(_done)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()] + [future]
        return future

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for queued persistence and dispatch work."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def _persist_message(self, message: Message) -> None:
        local_id = message.id
        self._submit(
            self._persistence.save_message,
            strip_markers(message.text),
            message.role,
            on_result=lambda persisted_id: self.ids.bind(local_id, persisted_id),
        )

    def _append(self, text: str, role: Role, persist: bool = True) -> Message:
        message = Message(id=new_local_id(), text=text, role=role, created_at=time.time())
        self.messages.append(message)
        if persist:
            self._persist_message(message)
        return message

    def _show_welcome(self) -> None:
        message = self._append(welcome_message(self.page, self.subject), "assistant")
        self._welcome_id = message.id

    # Lifecycle

    def open(self, page: str = "/", subject_product: Optional[SubjectProduct] = None) -> OpenResult:
        """Purpose: Open the drawer: resume the stored conversation or start fresh.
        Inputs/Outputs: Inputs are the page path and the product in view; output is
            an OpenResult describing how the conversation opened.
        Side Effects / State: CLOSED -> OPENING -> RESUMING|FRESH -> ACTIVE. A
            category change archives the stored conversation.
        Dependencies: ConversationPersistence loads, greetings.
        Failure Modes: Load failures are logged and treated as an empty history.
        If Removed: Sessions never start.
        Testing Notes: Stored "financing" + page "/repower" + history -> FRESH.
        """
        with self._lock:
            if self.state is LifecycleState.ACTIVE:
                self.update_subject(subject_product)
                return self._open_result(LifecycleState.ACTIVE)
            self.state = LifecycleState.OPENING
            self.page = page or "/"
            self.subject = subject_product
            current = subject_category_for_page(self.page)
            self.subject_category = current

            # Synchronous loads; the decision depends on them. Queued writes land first.
            self.flush(OPEN_FLUSH_TIMEOUT_SEC)
            try:
                stored = self._persistence.load_messages(self._history_limit)
                stored_category = self._persistence.load_subject_category()
            except Exception as exc:
                logger.warning("session=%s history load failed: %s", self.session_id, exc)
                stored, stored_category = [], None

            category_changed = bool(stored) and stored_category is not None and stored_category != current
            if stored and not category_changed:
                self.state = LifecycleState.RESUMING
                self._resume(stored)
            else:
                self.state = LifecycleState.FRESH
                if category_changed:
                    logger.info(
                        "session=%s context changed %s -> %s, archiving %d messages",
                        self.session_id,
                        stored_category,
                        current,
                        len(stored),
                    )
                    self._submit(self._persistence.clear_conversation)
                self._reset_local()
                self._show_welcome()
            if stored_category != current:
                self._submit(self._persistence.save_subject_category, current)
            opened_as = self.state
            self.state = LifecycleState.ACTIVE
            logger.info("session=%s opened as=%s category=%s", self.session_id, opened_as.value, current)
            return self._open_result(opened_as)

    def _resume(self, stored: List[StoredMessage]) -> None:
        self._reset_local()
        for record in stored:
            local_id = f"db_{record.id}"
            self.ids.bind(local_id, record.id)
            self.messages.append(
                Message(
                    id=local_id,
                    text=strip_markers(record.content),
                    role=record.role,
                    created_at=record.timestamp,
                    reaction=record.reaction,
                )
            )
            self.history.append(HistoryEntry(role=record.role, content=strip_markers(record.content)))
        self.show_history_banner = True

    def _reset_local(self) -> None:
        self.messages = []
        self.history = []
        self.ids.clear()
        self.show_history_banner = False
        self._welcome_id = None

    def _open_result(self, opened_as: LifecycleState) -> OpenResult:
        return OpenResult(
            opened_as=opened_as,
            subject_category=self.subject_category,
            show_history_banner=self.show_history_banner,
            messages=[message.model_copy() for message in self.messages],
        )

    def update_subject(self, subject_product: Optional[SubjectProduct]) -> None:
        """Track the product in view; refresh the welcome while it is the only message."""
        with self._lock:
            if self.state is not LifecycleState.ACTIVE:
                return
            self.subject = subject_product
            if not self.messages or self.messages[0].id != self._welcome_id:
                return
            if any(message.role == "user" for message in self.messages):
                return
            self.messages[0].text = welcome_message(self.page, subject_product)

    def current_context(self) -> TurnContext:
        return TurnContext(subject=self.subject, page=self.page)

    def auto_send(self, initial_message: str) -> Iterator[TurnUpdate]:
        """Send a prefilled message once; the literal text is the idempotency token."""
        with self._lock:
            token = (initial_message or "").strip()
            if not token or token in self._auto_sent:
                return iter(())
            self._auto_sent.add(token)
        return self.send(token)

    def send(self, text: str, context: Optional[TurnContext] = None) -> Iterator[TurnUpdate]:
        """Purpose: Start a turn and return its update stream.
        Inputs/Outputs: Inputs are the user text and an optional context; output is
            an iterator of TurnUpdate (display updates, then one final update).
        Side Effects / State: Appends and persists the user message immediately.
        Dependencies: ChatPipeline, CommandChannelParser, CommandDispatcher.
        Failure Modes: Returns an empty iterator when the session is not ACTIVE,
            the text is blank, or a turn is already open.
        If Removed: Nothing can be said to the assistant.
        Testing Notes: A second send while the first is streaming yields nothing.
        """
        with self._lock:
            cleaned = (text or "").strip()
            if self.state is not LifecycleState.ACTIVE or not cleaned or self._turn is not None:
                logger.info("session=%s send ignored state=%s turn_open=%s", self.session_id, self.state.value, self._turn is not None)
                return iter(())
            turn = _Turn()
            self._turn = turn
            snapshot = (context or self.current_context()).model_copy(deep=True)
            history = list(self.history)
            user_message = self._append(cleaned, "user")
            self.show_history_banner = False
        return TurnStream(self._run_turn(turn, user_message, snapshot, history), lambda: self._release_turn(turn))

    def _release_turn(self, turn: _Turn) -> None:
        with self._lock:
            if self._turn is turn:
                self._turn = None
                logger.info("session=%s turn released without a reply", self.session_id)

    def _run_turn(
        self, turn: _Turn, user_message: Message, context: TurnContext, history: List[HistoryEntry]
    ) -> Iterator[TurnUpdate]:
        # Stream display updates; persist and dispatch only after a terminal event.
        assistant = Message(id=new_local_id(), text="", role="assistant", created_at=time.time(), streaming=True)
        with self._lock:
            self.messages.append(assistant)
        parser = CommandChannelParser(self._financing_min_price)
        finished = False
        failed = False
        try:
            events: Iterator[StreamEvent]
            try:
                plan = self._pipeline.prepare(user_message.text, history, context, session_id=self.session_id)
                turn.proxy = self._pipeline.open_stream(plan)
                events = turn.proxy.stream(plan.payload)
            except Exception as exc:
                logger.warning("session=%s turn preparation failed: %s", self.session_id, exc)
                events = iter([StreamEvent("failed", self._pipeline.fallback_text)])

            terminal = False
            shown = ""
            for event in events:
                if turn.cancel.is_set():
                    break
                if event.kind == "delta":
                    display = parser.feed(event.text)
                elif event.kind == "failed":
                    failed = terminal = True
                    parser.reset(event.text)
                    display = parser.display_text()
                else:
                    terminal = True
                    continue
                if display != shown:
                    shown = display
                    assistant.text = display
                    yield TurnUpdate("display", assistant.id, display)

            if turn.cancel.is_set() or not terminal:
                logger.info("session=%s turn discarded", self.session_id)
                return

            parsed = parser.finalize()
            commands = [] if failed else parsed.commands
            with self._lock:
                assistant.text = parsed.display_text
                assistant.streaming = False
                assistant.commands = list(commands)
                self.history.append(HistoryEntry(role="user", content=user_message.text))
                self.history.append(HistoryEntry(role="assistant", content=parsed.display_text))
            self._persist_message(assistant)
            for command in commands:
                self._dispatch(command, context, user_message.text)
            finished = True
            yield TurnUpdate("final", assistant.id, parsed.display_text, tuple(commands), failed)
        finally:
            with self._lock:
                if not finished and assistant in self.messages:
                    self.messages.remove(assistant)
                if self._turn is turn:
                    self._turn = None

    def _dispatch(self, command: CommandPayload, context: TurnContext, summary: str) -> None:
        if self._dispatcher is None:
            logger.info("session=%s command kind=%s not dispatched (no dispatcher)", self.session_id, command.kind)
            return
        self._submit(self._dispatcher.dispatch, command, context, summary)

    def react(self, local_id: str, reaction: Reaction) -> bool:
        """Purpose: Record a thumbs reaction optimistically.
        Inputs/Outputs: Inputs are a local or persisted message id and the
            reaction; returns False when no such message is shown.
        Side Effects / State: Updates the message now; persists in the background.
        Dependencies: MessageIdMap, ConversationPersistence.update_reaction.
        Failure Modes: Unpersisted messages and write errors are logged; the
            local reaction is never rolled back.
        If Removed: Feedback buttons do nothing.
        Testing Notes: React before the save callback lands and check the log.
        """
        with self._lock:
            target = next((m for m in self.messages if m.id == local_id), None)
            if target is None:
                # Reloaded clients may only know the stored id.
                mapped = self.ids.local_id(local_id)
                target = next((m for m in self.messages if m.id == mapped), None) if mapped else None
                if target is None:
                    return False
                local_id = target.id
            target.reaction = reaction
        persisted_id = self.ids.persisted_id(local_id)
        if persisted_id is None:
            logger.info("session=%s reaction kept local only message=%s", self.session_id, local_id)
            return True
        self._submit(self._persistence.update_reaction, persisted_id, reaction)
        return True

    def start_fresh(self) -> OpenResult:
        """Archive the conversation and show a new welcome."""
        with self._lock:
            self._cancel_turn()
            self._submit(self._persistence.clear_conversation)
            self._submit(self._persistence.save_subject_category, self.subject_category)
            self._reset_local()
            self._show_welcome()
            self.state = LifecycleState.ACTIVE
            logger.info("session=%s started fresh", self.session_id)
            return self._open_result(LifecycleState.FRESH)

    def _cancel_turn(self) -> None:
        turn = self._turn
        if turn is None:
            return
        turn.cancel.set()
        if turn.proxy is not None:
            turn.proxy.cancel()
        self._turn = None

    def close(self) -> None:
        """Cancel any open stream, discard its partial reply and mark the session closed."""
        with self._lock:
            had_turn = self._turn is not None
            self._cancel_turn()
            self.messages = [m for m in self.messages if not m.streaming]
            self.state = LifecycleState.CLOSED
            logger.info("session=%s closed cancelled_turn=%s", self.session_id, had_turn)

    def dispose(self) -> None:
        self.close()
        self._executor.shutdown(wait=False)

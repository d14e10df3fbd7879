from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .command_parser import strip_markers
from .models import Reaction, Role, StoredMessage

logger = logging.getLogger("motorchat.store")


class ConversationRecord(BaseModel):
    """Persisted conversation: messages plus the page category it started on."""
    conversation_id: str
    session_id: str
    subject_category: Optional[str] = None
    active: bool = True
    updated_at: float
    messages: List[StoredMessage] = Field(default_factory=list)


class ConversationPersistence(Protocol):
    """Per-session persistence interface used by the lifecycle controller."""

    def load_messages(self, limit: int = 20) -> List[StoredMessage]: ...

    def save_message(self, text: str, role: Role, meta: Optional[Dict[str, Any]] = None) -> str: ...

    def update_reaction(self, persisted_id: str, reaction: Reaction) -> None: ...

    def clear_conversation(self) -> None: ...

    def load_subject_category(self) -> Optional[str]: ...

    def save_subject_category(self, category: str) -> None: ...


class SessionStore:
    """JSON-file conversation storage with archiving and session pruning."""

    def __init__(self, path: Optional[Path] = None, max_sessions: Optional[int] = None, max_archived: int = 50) -> None:
        """Purpose: Initialize the store and hydrate from disk if available.
        Inputs/Outputs: Inputs are an optional file path, an active-session cap and
            an archive cap; no return.
        Side Effects / State: Loads and caches active and archived conversations.
        Dependencies: Calls _load; relies on ConversationRecord/StoredMessage models.
        Failure Modes: JSON decode errors are logged and leave empty caches.
        If Removed: Conversations do not survive a closed drawer or a restart.
        Testing Notes: Use tmp_path; a second store on the same file sees the data.
        """
        # Keep configuration and preload persisted conversations if present.
        self._path = path
        self._max_sessions = max_sessions
        self._max_archived = max_archived
        self._lock = threading.RLock()
        self._active: Dict[str, ConversationRecord] = {}
        self._archived: List[ConversationRecord] = []
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted conversations from disk into memory.
        Inputs/Outputs: Reads the conversations file named by SESSION_STORE_PATH; returns None.
        Side Effects / State: Populates _active and _archived.
        Dependencies: ConversationRecord.model_validate for every stored entry.
        Failure Modes: An absent or unreadable file leaves the shopper with a fresh chat.
        If Removed: Previously stored conversations are never restored on startup.
        Testing Notes: Write "{not json" to the file; the store opens empty.
        """
        # Nothing persisted yet is the normal first-run case.
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("store unreadable path=%s error=%s", self._path, exc)
            return
        for session_id, record in data.get("conversations", {}).items():
            self._active[session_id] = ConversationRecord.model_validate(record)
        self._archived = [ConversationRecord.model_validate(record) for record in data.get("archived", [])]
        if self._prune_sessions():
            self._persist()

    def _persist(self) -> None:
        """Purpose: Persist in-memory conversations to disk.
        Inputs/Outputs: Rewrites the whole conversations file; returns None.
        Side Effects / State: Writes a JSON file with conversations/archived.
        Dependencies: model_dump on every ConversationRecord, then json.dumps.
        Failure Modes: IO errors raise to the caller (the lifecycle controller logs them).
        If Removed: Messages are never saved across restarts.
        Testing Notes: Append a message, then read the file back with a second store.
        """
        # Active and archived conversations share one file.
        if not self._path:
            return
        payload = {
            "conversations": {session_id: record.model_dump() for session_id, record in self._active.items()},
            "archived": [record.model_dump() for record in self._archived],
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def _record(self, session_id: str) -> ConversationRecord:
        record = self._active.get(session_id)
        if record is None:
            record = ConversationRecord(
                conversation_id=uuid.uuid4().hex,
                session_id=session_id,
                updated_at=time.time(),
            )
            self._active[session_id] = record
        return record

    def for_session(self, session_id: str) -> "SessionConversation":
        """Bind the persistence interface to one session id."""
        return SessionConversation(self, session_id)

    def load_messages(self, session_id: str, limit: int = 20) -> List[StoredMessage]:
        """Most recent messages of the active conversation, oldest first, markers stripped."""
        with self._lock:
            record = self._active.get(session_id)
            if record is None:
                return []
            recent = record.messages[-limit:] if limit > 0 else list(record.messages)
            return [message.model_copy(update={"content": strip_markers(message.content)}) for message in recent]

    def save_message(
        self, session_id: str, text: str, role: Role, meta: Optional[Dict[str, Any]] = None
    ) -> str:
        """Purpose: Append a message to the active conversation.
        Inputs/Outputs: Inputs are session_id, text, role and optional meta; output
            is the persisted id.
        Side Effects / State: Mutates caches and persists to disk.
        Dependencies: StoredMessage, _prune_sessions, _persist.
        Failure Modes: Persist can raise IO errors; missing conversations are created.
        If Removed: Chat history is not recorded.
        Testing Notes: Save two messages and reload from a new store instance.
        """
        # Stamp a persisted id and keep the conversation timestamp in sync.
        with self._lock:
            record = self._record(session_id)
            timestamp = time.time()
            message = StoredMessage(
                id=uuid.uuid4().hex,
                role=role,
                content=text,
                timestamp=timestamp,
                meta=meta,
            )
            record.messages.append(message)
            record.updated_at = timestamp
            self._prune_sessions()
            self._persist()
            return message.id

    def update_reaction(self, session_id: str, persisted_id: str, reaction: Reaction) -> None:
        with self._lock:
            record = self._active.get(session_id)
            target = next((m for m in record.messages if m.id == persisted_id), None) if record else None
            if target is None:
                raise KeyError(f"unknown message id {persisted_id}")
            target.reaction = reaction
            self._persist()

    def clear_conversation(self, session_id: str) -> None:
        """Archive the active conversation (marked inactive) and start an empty one."""
        with self._lock:
            record = self._active.pop(session_id, None)
            if record is None:
                return
            record.active = False
            record.updated_at = time.time()
            self._archived.append(record)
            overflow = len(self._archived) - max(self._max_archived, 0)
            if overflow > 0:
                del self._archived[:overflow]
            self._persist()
            logger.info("conversation archived session=%s messages=%d", session_id, len(record.messages))

    def load_subject_category(self, session_id: str) -> Optional[str]:
        with self._lock:
            record = self._active.get(session_id)
            return record.subject_category if record else None

    def save_subject_category(self, session_id: str, category: str) -> None:
        with self._lock:
            record = self._record(session_id)
            record.subject_category = category
            self._persist()

    def archived(self, session_id: Optional[str] = None) -> List[ConversationRecord]:
        with self._lock:
            return [r for r in self._archived if session_id is None or r.session_id == session_id]

    def _prune_sessions(self) -> bool:
        """Purpose: Enforce max_sessions by dropping the least recent conversations.
        Inputs/Outputs: No inputs; returns True if any conversations were removed.
        Side Effects / State: Mutates _active.
        Dependencies: ConversationRecord.updated_at; the max_sessions cap.
        Failure Modes: None; a cap of zero or less disables pruning.
        If Removed: The store file grows without bound.
        Testing Notes: With max_sessions=1 the older of two chats is dropped.
        """
        # Remove least-recent conversations when above the configured cap.
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        if len(self._active) <= self._max_sessions:
            return False
        ordered = sorted(self._active.values(), key=lambda r: r.updated_at, reverse=True)
        keep_ids = {record.session_id for record in ordered[: self._max_sessions]}
        removed = [session_id for session_id in list(self._active) if session_id not in keep_ids]
        for session_id in removed:
            self._active.pop(session_id, None)
        return bool(removed)


class SessionConversation:
    """SessionStore view bound to one session id (implements ConversationPersistence)."""

    def __init__(self, store: SessionStore, session_id: str) -> None:
        self._store = store
        self.session_id = session_id

    def load_messages(self, limit: int = 20) -> List[StoredMessage]:
        return self._store.load_messages(self.session_id, limit)

    def save_message(self, text: str, role: Role, meta: Optional[Dict[str, Any]] = None) -> str:
        return self._store.save_message(self.session_id, text, role, meta)

    def update_reaction(self, persisted_id: str, reaction: Reaction) -> None:
        self._store.update_reaction(self.session_id, persisted_id, reaction)

    def clear_conversation(self) -> None:
        self._store.clear_conversation(self.session_id)

    def load_subject_category(self) -> Optional[str]:
        return self._store.load_subject_category(self.session_id)

    def save_subject_category(self, category: str) -> None:
        self._store.save_subject_category(self.session_id, category)

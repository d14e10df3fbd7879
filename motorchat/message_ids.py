from __future__ import annotations

import threading
from typing import Dict, Optional


class MessageIdMap:
    """Two-way local id <-> persisted id map for one session.

    Persistence callbacks fill it from worker threads, so every access takes the
    lock. A local id without a persisted counterpart is normal: the write may
    still be in flight or may have failed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._to_persisted: Dict[str, str] = {}
        self._to_local: Dict[str, str] = {}

    def bind(self, local_id: str, persisted_id: str) -> None:
        with self._lock:
            previous = self._to_persisted.pop(local_id, None)
            if previous is not None:
                self._to_local.pop(previous, None)
            self._to_persisted[local_id] = persisted_id
            self._to_local[persisted_id] = local_id

    def persisted_id(self, local_id: str) -> Optional[str]:
        with self._lock:
            return self._to_persisted.get(local_id)

    def local_id(self, persisted_id: str) -> Optional[str]:
        with self._lock:
            return self._to_local.get(persisted_id)

    def clear(self) -> None:
        with self._lock:
            self._to_persisted.clear()
            self._to_local.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._to_persisted)

    def __contains__(self, local_id: object) -> bool:
        with self._lock:
            return local_id in self._to_persisted

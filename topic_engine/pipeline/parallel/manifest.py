# topic_engine/pipeline/parallel/manifest.py
from __future__ import annotations

import threading
import time
import uuid
from typing import Optional


class CompletionTracker:
    """
    Outstanding work items of one round (or of one ingestion stream).

    Contract:
    - add() before the item is enqueued
    - callback() exactly once per item, from the processor thread
    - is_everything_processed() == no outstanding identifiers
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: dict[uuid.UUID, str] = {}
        self._registered = 0
        self._acknowledged = 0

    def add(self, task_id: uuid.UUID, model_name: str = "") -> None:
        with self._lock:
            if task_id in self._pending:
                raise ValueError(f"task {task_id} already registered")
            self._pending[task_id] = model_name
            self._registered += 1

    def callback(self, task_id: uuid.UUID) -> None:
        with self._lock:
            if self._pending.pop(task_id, None) is not None:
                self._acknowledged += 1

    def is_everything_processed(self) -> bool:
        with self._lock:
            return not self._pending

    # ---------- counters ----------
    @property
    def registered_count(self) -> int:
        with self._lock:
            return self._registered

    @property
    def acknowledged_count(self) -> int:
        with self._lock:
            return self._acknowledged

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ---------- polling ----------
    def wait(self, idle_loop_ms: int, timeout_ms: Optional[int] = None) -> bool:
        """
        Poll until everything is acknowledged.
        timeout_ms=None waits forever; otherwise returns False on expiry.
        """
        deadline = None if timeout_ms is None else time.monotonic() + max(timeout_ms, 0) / 1000.0
        while not self.is_everything_processed():
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(idle_loop_ms / 1000.0)
        return True

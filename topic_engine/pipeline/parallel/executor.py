# topic_engine/pipeline/parallel/executor.py
from __future__ import annotations

import queue
import threading
from typing import Callable, Optional

import numpy as np

from topic_engine import logs
from topic_engine.engines.base import BatchProcessor
from topic_engine.model.phi_matrix import Token
from topic_engine.model.store import MatrixStore
from topic_engine.utils.errors import InternalError, InvalidOperation
from ..context import ProcessorOutput, WorkItem
from .types import Caller

MergerSink = Callable[[str, list[tuple[Token, np.ndarray]]], None]

_STOP = object()


class ProcessorPool:
    """
    ProcessorPool

    - N daemon threads pull WorkItems from one bounded queue
    - each item is executed to completion and acknowledged exactly once,
      whatever happens inside the engine
    - no cancellation: an enqueued item always runs
    """

    def __init__(
            self,
            *,
            store: MatrixStore,
            engine: Optional[BatchProcessor],
            queue_max_size: int,
            merger_sink: Optional[MergerSink] = None,
    ):
        self.store = store
        self.engine = engine
        self.merger_sink = merger_sink
        self.queue: queue.Queue = queue.Queue(maxsize=queue_max_size)

        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._serial = 0

    # ---------------- lifecycle ----------------

    @property
    def size(self) -> int:
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            return len(self._threads)

    def resize(self, processors_count: int, queue_max_size: Optional[int] = None) -> None:
        if queue_max_size is not None:
            with self.queue.mutex:
                self.queue.maxsize = queue_max_size

        current = self.size
        if processors_count > current:
            with self._lock:
                for _ in range(processors_count - current):
                    self._serial += 1
                    t = threading.Thread(
                        target=self._worker_loop,
                        name=f"processor-{self._serial}",
                        daemon=True,
                    )
                    t.start()
                    self._threads.append(t)
        elif processors_count < current:
            for _ in range(current - processors_count):
                self.queue.put(_STOP)

        logs.info(
            f"[ProcessorPool] resize {current} -> {processors_count} "
            f"queue_max_size={self.queue.maxsize}"
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            threads = list(self._threads)
        for _ in threads:
            self.queue.put(_STOP)
        for t in threads:
            t.join(timeout)
        logs.info(f"[ProcessorPool] stopped {len(threads)} processor(s)")

    # ---------------- submission ----------------

    def push(self, item: WorkItem, timeout_ms: Optional[int] = None) -> bool:
        """
        Enqueue; timeout_ms=None blocks until there is room.
        Returns False when the queue stayed full for timeout_ms.
        """
        try:
            if timeout_ms is None:
                self.queue.put(item)
            else:
                self.queue.put(item, timeout=max(timeout_ms, 0) / 1000.0)
        except queue.Full:
            return False
        return True

    def run_inline(self, item: WorkItem) -> ProcessorOutput:
        """
        Execute in the caller's thread, without routing or acknowledgment.
        Errors propagate to the caller.
        """
        if self.size == 0:
            raise InternalError("No processors exist in the master component")
        return self._process(item)

    # ---------------- internal ----------------

    def _worker_loop(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is _STOP:
                    return
                self._execute(item)
            finally:
                self.queue.task_done()

    def _process(self, item: WorkItem) -> ProcessorOutput:
        if self.engine is None:
            raise InternalError("No BatchProcessor engine configured")
        source = self.store.resolve(item.model_name)
        if source is None:
            raise InvalidOperation(f"Model {item.model_name} does not exist")
        return self.engine.process(item, source.p_wt)

    def _execute(self, item: WorkItem) -> None:
        try:
            output = self._process(item)
            self._route(item, output)
        except Exception:
            logs.exception(
                f"[ProcessorPool] batch={item.batch} model={item.model_name} "
                f"caller={item.caller.value} failed"
            )
        finally:
            if item.notifiable is not None:
                item.notifiable.callback(item.task_id)

    def _route(self, item: WorkItem, output: ProcessorOutput) -> None:
        if item.scores_merger is not None:
            for score_name, data in output.scores.items():
                if item.score_names and score_name not in item.score_names:
                    continue
                item.scores_merger.append(item.model_name, score_name, data)

        if item.cache_manager is not None and output.theta is not None:
            item.cache_manager.update(output.theta)

        if not output.nwt_increment:
            return
        if item.nwt_target_name:
            self.store.accumulate(item.nwt_target_name, output.nwt_increment)
        elif item.caller == Caller.ADD_BATCH and self.merger_sink is not None:
            self.merger_sink(item.model_name, output.nwt_increment)

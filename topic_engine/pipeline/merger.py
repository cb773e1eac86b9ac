#!filepath: topic_engine/pipeline/merger.py
from __future__ import annotations

import queue
import threading
import time
from typing import Mapping, Optional, Sequence

import numpy as np

from topic_engine import logs
from topic_engine.config.model_config import DictionaryConfig, ModelConfig
from topic_engine.engines.phi_operations import PhiMatrixOperations
from topic_engine.engines.regularizers.base import PhiRegularizer
from topic_engine.model.chunk import TopicModelChunk
from topic_engine.model.phi_matrix import PhiMatrix, Token
from topic_engine.model.store import MatrixStore
from topic_engine.model.topic_model import TopicModel
from topic_engine.utils.errors import InvalidOperation

_STOP = object()


class ModelMerger:
    """
    ModelMerger = owner of versioned topic models

    - a background thread drains processor increments (AddBatch path)
      into private per-model delta matrices
    - synchronize_model() folds the delta into a new published version:
          n_wt' = decay * n_wt + apply * delta
          p_wt' = normalize(n_wt' + r_wt)
    """

    def __init__(self, store: MatrixStore, *, queue_max_size: int, idle_loop_ms: int = 1):
        self.store = store
        self.idle_loop_ms = idle_loop_ms
        self._queue: queue.Queue = queue.Queue(maxsize=queue_max_size)
        self._lock = threading.Lock()
        self._increments: dict[str, PhiMatrix] = {}

        self._thread = threading.Thread(target=self._loop, name="merger", daemon=True)
        self._thread.start()

    # --------------------------------------------------
    # pending-merge queue
    # --------------------------------------------------
    def push(self, model_name: str, increments: list[tuple[Token, np.ndarray]]) -> None:
        self._queue.put((model_name, increments))

    def resize_queue(self, queue_max_size: int) -> None:
        with self._queue.mutex:
            self._queue.maxsize = queue_max_size

    def pending_count(self) -> int:
        with self._queue.mutex:
            return self._queue.unfinished_tasks

    def wait_idle(self, timeout_ms: int) -> bool:
        """
        Poll until every pushed increment is merged.
        timeout_ms == -1 waits forever; negative budgets act as a single check.
        """
        deadline = None if timeout_ms == -1 else time.monotonic() + max(timeout_ms, 0) / 1000.0
        while self.pending_count() > 0:
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(self.idle_loop_ms / 1000.0)
        return True

    def stop(self) -> None:
        self._queue.put(_STOP)
        self._thread.join()

    def _loop(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                model_name, increments = entry
                self._merge_increment(model_name, increments)
            except Exception:
                logs.exception("[Merger] failed to merge processor increment")
            finally:
                self._queue.task_done()

    def _merge_increment(self, model_name: str, increments: list[tuple[Token, np.ndarray]]) -> None:
        source = self.store.resolve(model_name)
        if source is None:
            logs.warning(f"[Merger] Model {model_name} does not exist, increment dropped")
            return

        with self._lock:
            delta = self._increments.get(model_name)
            if delta is None:
                delta = PhiMatrix(model_name, source.p_wt.topic_name)
                self._increments[model_name] = delta
            for token, increment in increments:
                delta.increase(delta.add_token(token), increment)

    # --------------------------------------------------
    # versioned model commands
    # --------------------------------------------------
    def force_reset_increments(self, model_name: Optional[str] = None) -> None:
        with self._lock:
            if model_name:
                self._increments.pop(model_name, None)
            else:
                self._increments = {}

    def synchronize_model(
        self,
        model_name: str,
        *,
        decay_weight: float,
        apply_weight: float,
        regularizers: Mapping[str, PhiRegularizer],
        model_config: Optional[ModelConfig] = None,
        invoke_regularizers: bool = True,
    ) -> TopicModel:
        with self._lock:
            delta = self._increments.pop(model_name, None)

        current = self.store.get_topic_model(model_name)
        source = self.store.resolve(model_name)
        if source is None and delta is None:
            raise InvalidOperation(f"Model {model_name} does not exist")

        base = source.n_wt if source is not None else None
        topic_name = base.topic_name if base is not None else delta.topic_name

        n_wt = PhiMatrix(model_name, topic_name)
        if base is not None:
            n_wt.reshape(base)
            n_wt.set_values(np.asarray(base.values, dtype=np.float32) * np.float32(decay_weight))
        if delta is not None:
            chunk = PhiMatrixOperations.retrieve_external_topic_model(delta)
            PhiMatrixOperations.apply_topic_model_operation(chunk, apply_weight, n_wt)

        r_wt = None
        settings = self._regularizer_settings(model_config) if invoke_regularizers else []
        if settings:
            p_prev = current.p_wt if current is not None else self._normalized(n_wt)
            r_wt = PhiMatrix(f"{model_name}:rwt", topic_name)
            r_wt.reshape(n_wt)
            PhiMatrixOperations.invoke_phi_regularizers(regularizers, settings, p_prev, n_wt, r_wt)

        model = TopicModel(
            name=model_name,
            version=(current.version + 1) if current is not None else 1,
            n_wt=n_wt,
            p_wt=self._normalized(n_wt, r_wt),
        )
        self.store.set_topic_model(model)
        logs.info(
            f"[Merger] synchronized {model_name} version={model.version} "
            f"tokens={n_wt.token_size} topics={n_wt.topic_size}"
        )
        return model

    def initialize_model(
        self,
        model_name: str,
        dictionary: DictionaryConfig,
        topic_name: Sequence[str],
        seed: Optional[int] = None,
    ) -> TopicModel:
        rng = np.random.default_rng(seed)

        n_wt = PhiMatrix(model_name, topic_name)
        for entry in dictionary.entry:
            n_wt.add_token(Token(entry.keyword, entry.class_id))
        n_wt.set_values(rng.random((n_wt.token_size, n_wt.topic_size), dtype=np.float32))

        self.force_reset_increments(model_name)
        return self._publish(model_name, n_wt)

    def overwrite_topic_model(self, chunk: TopicModelChunk) -> TopicModel:
        """
        Replace the counts of chunk.name with the chunk content.
        """
        n_wt = PhiMatrix(chunk.name, chunk.topic_name)
        PhiMatrixOperations.apply_topic_model_operation(chunk, 1.0, n_wt)
        self.force_reset_increments(chunk.name)
        return self._publish(chunk.name, n_wt)

    # --------------------------------------------------
    # internal
    # --------------------------------------------------
    def _publish(self, model_name: str, n_wt: PhiMatrix) -> TopicModel:
        current = self.store.get_topic_model(model_name)
        model = TopicModel(
            name=model_name,
            version=(current.version + 1) if current is not None else 1,
            n_wt=n_wt,
            p_wt=self._normalized(n_wt),
        )
        self.store.set_topic_model(model)
        logs.info(f"[Merger] published {model_name} version={model.version} tokens={n_wt.token_size}")
        return model

    @staticmethod
    def _normalized(n_wt: PhiMatrix, r_wt: Optional[PhiMatrix] = None) -> PhiMatrix:
        p_wt = PhiMatrix(n_wt.name, n_wt.topic_name)
        p_wt.reshape(n_wt)
        PhiMatrixOperations.find_pwt(n_wt, p_wt, r_wt)
        return p_wt

    @staticmethod
    def _regularizer_settings(model_config: Optional[ModelConfig]) -> list[tuple[str, float]]:
        if model_config is None:
            return []
        tau = model_config.regularizer_tau or [1.0] * len(model_config.regularizer_name)
        return list(zip(model_config.regularizer_name, tau))

#!filepath: topic_engine/model/store.py
from __future__ import annotations

import threading
from typing import Iterable, Optional

import numpy as np

from topic_engine.utils.errors import InvalidOperation
from .phi_matrix import PhiMatrix, Token
from .topic_model import ModelSource, RawMatrix, TopicModel, VersionedModel


class MatrixStore:
    """
    Named, immutable-once-published matrix snapshots.

    Copy-on-write:
      - writers build a complete replacement dict and swap the reference
      - readers never lock; a snapshot they hold stays valid forever
      - accumulate() adds into one private staging copy under a per-name
        lock, so concurrent workers never lose an update; flush()
        publishes it as a single snapshot
    """

    def __init__(self):
        self._phi: dict[str, PhiMatrix] = {}
        self._models: dict[str, TopicModel] = {}
        self._write_lock = threading.Lock()
        self._name_locks: dict[str, threading.Lock] = {}
        self._staging: dict[str, PhiMatrix] = {}

    # --------------------------------------------------
    # read side (lock-free)
    # --------------------------------------------------
    def get_phi_matrix(self, name: str) -> Optional[PhiMatrix]:
        return self._phi.get(name)

    def get_topic_model(self, name: str) -> Optional[TopicModel]:
        return self._models.get(name)

    def resolve(self, name: str) -> Optional[ModelSource]:
        """
        Versioned model wins over a raw matrix of the same name.
        """
        model = self._models.get(name)
        if model is not None:
            return VersionedModel(model)
        matrix = self._phi.get(name)
        if matrix is not None:
            return RawMatrix(matrix)
        return None

    def require(self, name: str) -> ModelSource:
        source = self.resolve(name)
        if source is None:
            raise InvalidOperation(f"Model {name} does not exist")
        return source

    def names(self) -> list[str]:
        return sorted(set(self._phi) | set(self._models))

    # --------------------------------------------------
    # write side
    # --------------------------------------------------
    def _name_lock(self, name: str) -> threading.Lock:
        with self._write_lock:
            return self._name_locks.setdefault(name, threading.Lock())

    def _publish_phi(self, name: str, matrix: PhiMatrix) -> None:
        if matrix.is_frozen and matrix.name != name:
            matrix = matrix.copy(name)
        matrix.name = name
        matrix.freeze()
        with self._write_lock:
            replacement = dict(self._phi)
            replacement[name] = matrix
            self._phi = replacement

    def set_phi_matrix(self, name: str, matrix: PhiMatrix) -> None:
        with self._name_lock(name):
            self._staging.pop(name, None)
            self._publish_phi(name, matrix)

    def set_topic_model(self, model: TopicModel) -> None:
        model.n_wt.freeze()
        model.p_wt.freeze()
        with self._write_lock:
            replacement = dict(self._models)
            replacement[model.name] = model
            self._models = replacement

    def dispose(self, name: str) -> bool:
        """
        Remove every matrix published under `name`; True if anything was removed.
        """
        with self._write_lock:
            found = name in self._phi or name in self._models
            self._phi = {k: v for k, v in self._phi.items() if k != name}
            self._models = {k: v for k, v in self._models.items() if k != name}
            self._staging.pop(name, None)
            self._name_locks.pop(name, None)
        return found

    # --------------------------------------------------
    # staged accumulation
    # --------------------------------------------------
    def accumulate(self, name: str, increments: Iterable[tuple[Token, np.ndarray]]) -> None:
        """
        Add per-token increments into the staging copy of raw matrix `name`;
        unknown tokens are appended. Nothing is visible to readers until flush().
        """
        with self._name_lock(name):
            staging = self._staging.get(name)
            if staging is None:
                current = self._phi.get(name)
                if current is None:
                    raise InvalidOperation(f"Model {name} does not exist")
                staging = current.copy()
                self._staging[name] = staging

            for token, increment in increments:
                token_id = staging.add_token(token)
                staging.increase(token_id, increment)

    def flush(self, name: str) -> bool:
        """
        Publish the staged increments of `name` as one snapshot.
        False if nothing was staged.
        """
        with self._name_lock(name):
            staging = self._staging.pop(name, None)
            if staging is None:
                return False
            self._publish_phi(name, staging)
            return True

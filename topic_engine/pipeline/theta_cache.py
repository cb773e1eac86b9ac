#!filepath: topic_engine/pipeline/theta_cache.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
import pandas as pd


@dataclass
class ThetaEntry:
    """
    Theta of one batch under one model: one row per document.
    """

    batch: str
    model_name: str
    topic_name: list[str]
    item_id: list[int]
    item_weights: np.ndarray  # (items, topics)
    item_title: list[str] = field(default_factory=list)


@dataclass
class ThetaMatrix:
    """
    Theta returned to the caller.

    - dense  : item_weights[i] has one value per topic, topic_index is None
    - sparse : item_weights[i] holds non-zero values only, positions in topic_index[i]
    """

    model_name: str
    topic_name: list[str]
    item_id: list[int] = field(default_factory=list)
    item_title: list[str] = field(default_factory=list)
    item_weights: list[np.ndarray] = field(default_factory=list)
    topic_index: Optional[list[np.ndarray]] = None

    @property
    def is_sparse(self) -> bool:
        return self.topic_index is not None

    @property
    def item_size(self) -> int:
        return len(self.item_id)

    def to_frame(self) -> pd.DataFrame:
        rows = np.zeros((self.item_size, len(self.topic_name)), dtype=np.float32)
        for i, weights in enumerate(self.item_weights):
            if self.is_sparse:
                rows[i, np.asarray(self.topic_index[i], dtype=np.int64)] = weights
            else:
                rows[i] = weights
        return pd.DataFrame(
            rows,
            index=pd.Index(self.item_id, name="item_id"),
            columns=list(self.topic_name),
        )


class ThetaCache:
    """
    Theta cache keyed by (batch, model).

    Two lifetimes:
      - persistent : owned by the instance, shared by every worker
      - call-scoped: created inside one dispatch round, dropped with it
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[tuple[str, str], ThetaEntry] = {}

    def update(self, entry: ThetaEntry) -> None:
        with self._lock:
            self._entries[(entry.batch, entry.model_name)] = entry

    def find(self, batch: str, model_name: str) -> Optional[ThetaEntry]:
        with self._lock:
            return self._entries.get((batch, model_name))

    def dispose_model(self, model_name: str) -> None:
        with self._lock:
            self._entries = {k: v for k, v in self._entries.items() if k[1] != model_name}

    def clear(self) -> None:
        with self._lock:
            self._entries = {}

    def request_theta_matrix(
        self,
        model_name: str,
        *,
        use_sparse_format: bool = False,
        batches: Optional[Sequence[str]] = None,
    ) -> Optional[ThetaMatrix]:
        """
        Concatenate cached theta of `model_name`, in `batches` order when given
        (insertion order otherwise). None if nothing is cached for the model.
        """
        with self._lock:
            entries = [e for (_, m), e in self._entries.items() if m == model_name]

        if batches is not None:
            position = {b: i for i, b in enumerate(batches)}
            entries = [e for e in entries if e.batch in position]
            entries.sort(key=lambda e: position[e.batch])

        if not entries:
            return None

        theta = ThetaMatrix(
            model_name=model_name,
            topic_name=list(entries[0].topic_name),
            topic_index=[] if use_sparse_format else None,
        )
        for entry in entries:
            titles = entry.item_title or [""] * len(entry.item_id)
            for item_id, title, row in zip(entry.item_id, titles, entry.item_weights):
                row = np.asarray(row, dtype=np.float32)
                theta.item_id.append(item_id)
                theta.item_title.append(title)
                if use_sparse_format:
                    nz = np.flatnonzero(row).astype(np.int32)
                    theta.topic_index.append(nz)
                    theta.item_weights.append(row[nz])
                else:
                    theta.item_weights.append(row)
        return theta

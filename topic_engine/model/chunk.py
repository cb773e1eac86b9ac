# topic_engine/model/chunk.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .phi_matrix import Token


@dataclass
class TopicModelChunk:
    """
    External (message) form of a slice of a phi matrix.

    - dense  : token_weights[i] has one value per topic, topic_index is None
    - sparse : token_weights[i] holds only the non-zero values,
               topic_index[i] their topic positions
    Used both by topic-model requests and by the on-disk chunk format.
    """

    name: str
    topic_name: list[str]
    token: list[str] = field(default_factory=list)
    class_id: list[str] = field(default_factory=list)
    token_weights: list[np.ndarray] = field(default_factory=list)
    topic_index: Optional[list[np.ndarray]] = None

    @property
    def is_sparse(self) -> bool:
        return self.topic_index is not None

    @property
    def token_size(self) -> int:
        return len(self.token)

    @property
    def topic_size(self) -> int:
        return len(self.topic_name)

    def tokens(self) -> list[Token]:
        return [Token(k, c) for k, c in zip(self.token, self.class_id)]

    def dense_row(self, i: int) -> np.ndarray:
        if not self.is_sparse:
            return np.asarray(self.token_weights[i], dtype=np.float32)
        row = np.zeros(self.topic_size, dtype=np.float32)
        row[np.asarray(self.topic_index[i], dtype=np.int64)] = self.token_weights[i]
        return row

    def dense_rows(self) -> np.ndarray:
        rows = np.zeros((self.token_size, self.topic_size), dtype=np.float32)
        for i in range(self.token_size):
            rows[i] = self.dense_row(i)
        return rows

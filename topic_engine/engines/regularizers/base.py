# topic_engine/engines/regularizers/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import numpy as np

from topic_engine.config.model_config import DictionaryConfig, RegularizerConfig
from topic_engine.model.phi_matrix import PhiMatrix

DictionaryLookup = Callable[[str], Optional[DictionaryConfig]]


def aligned_rows(source: PhiMatrix, layout: PhiMatrix) -> np.ndarray:
    """
    Rows of `source` re-ordered to the token layout of `layout`;
    tokens missing from `source` get zero rows.
    """
    if source is layout or source.tokens() == layout.tokens():
        return np.array(source.values, dtype=np.float32)

    rows = np.zeros((layout.token_size, layout.topic_size), dtype=np.float32)
    for token_id, token in enumerate(layout.tokens()):
        src_id = source.token_index(token)
        if src_id >= 0:
            rows[token_id] = source.row(src_id)
    return rows


class PhiRegularizer(ABC):
    """
    Phi regularizer contract:
      apply(p_wt, n_wt) -> contribution in the token layout of n_wt

    tau weighting and accumulation into r_wt happen in the caller.
    """

    def __init__(self, config: RegularizerConfig, dictionaries: DictionaryLookup):
        self.config = config
        self.name = config.name
        self._dictionaries = dictionaries
        self._calls = 0
        self._last_norm = 0.0

    def topic_mask(self, phi: PhiMatrix) -> np.ndarray:
        """Boolean mask over topics; params.topic_name restricts it."""
        names = self.config.params.get("topic_name") or []
        if not names:
            return np.ones(phi.topic_size, dtype=bool)
        return np.array([t in names for t in phi.topic_name], dtype=bool)

    def __call__(self, p_wt: PhiMatrix, n_wt: PhiMatrix) -> np.ndarray:
        contribution = self.apply(p_wt, n_wt)
        self._calls += 1
        self._last_norm = float(np.abs(contribution).sum())
        return contribution

    @abstractmethod
    def apply(self, p_wt: PhiMatrix, n_wt: PhiMatrix) -> np.ndarray:
        raise NotImplementedError

    def internal_state(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.config.type,
            "calls": self._calls,
            "last_norm": self._last_norm,
        }

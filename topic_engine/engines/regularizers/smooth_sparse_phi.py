# topic_engine/engines/regularizers/smooth_sparse_phi.py
from __future__ import annotations

import numpy as np

from topic_engine.model.phi_matrix import PhiMatrix, Token
from topic_engine.utils.errors import InvalidOperation
from .base import PhiRegularizer
from .registry import register_regularizer


@register_regularizer("smooth_sparse_phi")
class SmoothSparsePhi(PhiRegularizer):
    """
    r_wt = beta_w on the selected topics.

    params:
      topic_name      : topics to touch (all if empty)
      class_id        : modalities to touch (all if empty)
      dictionary_name : beta_w taken from dictionary values, 1.0 otherwise;
                        tokens absent from the dictionary get 0

    Negative tau sparses, positive tau smooths.
    """

    def apply(self, p_wt: PhiMatrix, n_wt: PhiMatrix) -> np.ndarray:
        beta = self._token_beta(n_wt)

        class_ids = self.config.params.get("class_id") or []
        if class_ids:
            beta = beta * np.array(
                [t.class_id in class_ids for t in n_wt.tokens()], dtype=np.float32
            )

        mask = self.topic_mask(n_wt).astype(np.float32)
        return np.outer(beta, mask).astype(np.float32)

    def _token_beta(self, n_wt: PhiMatrix) -> np.ndarray:
        dictionary_name = self.config.params.get("dictionary_name")
        if not dictionary_name:
            return np.ones(n_wt.token_size, dtype=np.float32)

        dictionary = self._dictionaries(dictionary_name)
        if dictionary is None:
            raise InvalidOperation(f"Dictionary {dictionary_name} does not exist")

        values = {Token(e.keyword, e.class_id): e.value for e in dictionary.entry}
        return np.array([values.get(t, 0.0) for t in n_wt.tokens()], dtype=np.float32)

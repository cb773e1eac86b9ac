# topic_engine/engines/regularizers/decorrelator_phi.py
from __future__ import annotations

import numpy as np

from topic_engine.model.phi_matrix import PhiMatrix
from .base import PhiRegularizer, aligned_rows
from .registry import register_regularizer


@register_regularizer("decorrelator_phi")
class DecorrelatorPhi(PhiRegularizer):
    """
    r_wt = -p_wt * sum_{s != t} p_ws over the selected topics
    """

    def apply(self, p_wt: PhiMatrix, n_wt: PhiMatrix) -> np.ndarray:
        mask = self.topic_mask(n_wt)
        p = aligned_rows(p_wt, n_wt) * mask
        others = p.sum(axis=1, keepdims=True) - p
        return (-p * others).astype(np.float32)

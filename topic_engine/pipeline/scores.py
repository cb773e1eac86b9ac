# topic_engine/pipeline/scores.py
from __future__ import annotations

import copy
import threading
from numbers import Number
from typing import Any, Dict, Optional

import numpy as np

ScoreData = Dict[str, Any]


def merge_score_data(total: ScoreData, partial: ScoreData) -> ScoreData:
    """
    Additive merge: numbers and numpy arrays are summed,
    anything else keeps the latest reported value.
    """
    merged = dict(total)
    for key, value in partial.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, (Number, np.ndarray)) and not isinstance(value, bool):
            merged[key] = merged[key] + value
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ScoresMerger:
    """
    Per (model, score) accumulator shared by every processor thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._scores: dict[tuple[str, str], ScoreData] = {}

    def append(self, model_name: str, score_name: str, partial: ScoreData) -> None:
        key = (model_name, score_name)
        with self._lock:
            self._scores[key] = merge_score_data(self._scores.get(key, {}), partial)

    def reset_scores(self, model_name: Optional[str] = None) -> None:
        """
        Clear one model's scores; every model when model_name is empty.
        """
        with self._lock:
            if not model_name:
                self._scores = {}
            else:
                self._scores = {k: v for k, v in self._scores.items() if k[0] != model_name}

    def request_score(self, model_name: str, score_name: str) -> Optional[ScoreData]:
        with self._lock:
            data = self._scores.get((model_name, score_name))
        return copy.deepcopy(data) if data is not None else None

    def score_names(self, model_name: str) -> list[str]:
        with self._lock:
            return sorted(s for (m, s) in self._scores if m == model_name)

# topic_engine/model/topic_model.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .phi_matrix import PhiMatrix


@dataclass(frozen=True)
class TopicModel:
    """
    Versioned model produced by the merger.

    Semantics:
    - n_wt holds accumulated counts, p_wt the normalized probabilities
    - each synchronization publishes a new instance with version + 1
    """

    name: str
    version: int
    n_wt: PhiMatrix
    p_wt: PhiMatrix

    @property
    def topic_name(self) -> tuple[str, ...]:
        return self.n_wt.topic_name


# ============================================================
# Matrix source (tagged union, resolved once per command)
# ============================================================
@dataclass(frozen=True)
class VersionedModel:
    model: TopicModel

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def n_wt(self) -> PhiMatrix:
        return self.model.n_wt

    @property
    def p_wt(self) -> PhiMatrix:
        return self.model.p_wt


@dataclass(frozen=True)
class RawMatrix:
    matrix: PhiMatrix

    @property
    def name(self) -> str:
        return self.matrix.name

    # a raw matrix plays whichever role the caller asks for
    @property
    def n_wt(self) -> PhiMatrix:
        return self.matrix

    @property
    def p_wt(self) -> PhiMatrix:
        return self.matrix


ModelSource = Union[VersionedModel, RawMatrix]

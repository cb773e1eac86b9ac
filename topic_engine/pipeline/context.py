#!filepath: topic_engine/pipeline/context.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import numpy as np

from topic_engine.config.model_config import ModelConfig
from topic_engine.model.phi_matrix import Token
from .parallel.types import Caller
from .scores import ScoreData, ScoresMerger
from .theta_cache import ThetaCache, ThetaEntry

if TYPE_CHECKING:
    from .parallel.manifest import CompletionTracker


@dataclass(slots=True)
class WorkItem:
    """
    One unit of dispatch, consumed exactly once by a processor thread.

    Routing of the processor's output:
      - nwt_target_name set      -> increments accumulated into that matrix
      - caller == ADD_BATCH      -> increments handed to the merger
      - scores_merger / cache    -> score partials / theta, when present
    """

    task_id: uuid.UUID
    model_name: str
    batch: str
    model_config: ModelConfig
    caller: Caller

    nwt_target_name: Optional[str] = None
    notifiable: Optional["CompletionTracker"] = None
    scores_merger: Optional[ScoresMerger] = None
    cache_manager: Optional[ThetaCache] = None
    score_names: tuple[str, ...] = ()

    @classmethod
    def new(cls, **kwargs) -> "WorkItem":
        return cls(task_id=uuid.uuid4(), **kwargs)


@dataclass(slots=True)
class ProcessorOutput:
    """What a BatchProcessor reports for one work item."""

    nwt_increment: list[tuple[Token, np.ndarray]] = field(default_factory=list)
    theta: Optional[ThetaEntry] = None
    scores: dict[str, ScoreData] = field(default_factory=dict)

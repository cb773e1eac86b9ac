#!filepath: topic_engine/engines/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from topic_engine.model.phi_matrix import PhiMatrix
    from topic_engine.pipeline.context import ProcessorOutput, WorkItem


class BatchProcessor(ABC):
    """
    Inference engine for one work item (E-step lives outside this package).

    - loads the batch referenced by item.batch
    - infers theta for its documents against p_wt
    - reports n_wt increments, theta rows and score partials

    Must be thread-safe: every processor thread shares one instance.
    No acknowledgment or routing happens here; the pool owns that.
    """

    @abstractmethod
    def process(self, item: "WorkItem", p_wt: "PhiMatrix") -> "ProcessorOutput":
        raise NotImplementedError

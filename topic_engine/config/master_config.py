# topic_engine/config/master_config.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .log_config import LogConfig


class ScoreConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "perplexity"


class MasterConfig(BaseModel):
    """
    MasterConfig (engine-wide snapshot, FROZEN)

    Semantics:
    - never mutated in place; reconfiguration builds a new instance
    - disk_path is immutable once the engine has been configured
    - processor_queue_max_size=None means "same as processors_count"
    """

    model_config = ConfigDict(frozen=True)

    disk_path: Optional[str] = None
    processors_count: int = Field(default=1, ge=0)
    processor_queue_max_size: Optional[int] = Field(default=None, ge=1)
    merger_queue_max_size: int = Field(default=10, ge=1)
    cache_theta: bool = False
    score_config: List[ScoreConfig] = Field(default_factory=list)

    # polling / chunking constants (tunable)
    idle_loop_frequency_ms: int = Field(default=1, ge=1)
    export_chunk_bytes: int = Field(default=100 * 1024 * 1024, ge=1)

    log: LogConfig = Field(default_factory=LogConfig)

    def with_defaults(self) -> "MasterConfig":
        """
        Fill unset tunables from other fields.
        """
        if self.processor_queue_max_size is not None:
            return self
        return self.model_copy(
            update={"processor_queue_max_size": max(1, self.processors_count)}
        )

    def score_names(self) -> list[str]:
        return [s.name for s in self.score_config]

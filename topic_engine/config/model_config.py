#!filepath: topic_engine/config/model_config.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from topic_engine.utils.errors import InvalidOperation


class ModelConfig(BaseModel):
    """
    Per-model settings consumed by the processors of one dispatch round.
    """

    name: str
    topics_count: int = Field(default=0, ge=0)
    topic_name: List[str] = Field(default_factory=list)

    class_id: List[str] = Field(default_factory=list)
    class_weight: List[float] = Field(default_factory=list)

    regularizer_name: List[str] = Field(default_factory=list)
    regularizer_tau: List[float] = Field(default_factory=list)

    inner_iterations_count: int = Field(default=10, ge=1)
    stream_name: Optional[str] = None
    reuse_theta: bool = False
    use_sparse_bow: bool = True
    enabled: bool = True

    def uses_class_weights(self) -> bool:
        return bool(self.class_id or self.class_weight)

    def fix_and_validate(self) -> "ModelConfig":
        """
        Return a fully populated copy:
          - topic names generated from topics_count (or the reverse)
          - empty tau / class weight lists default to 1.0 per entry
        Raises InvalidOperation on inconsistent parallel lists.
        """
        if not self.name:
            raise InvalidOperation("ModelConfig.name must not be empty")

        topic_name = list(self.topic_name)
        topics_count = self.topics_count
        if not topic_name:
            if topics_count <= 0:
                raise InvalidOperation(
                    f"ModelConfig({self.name}): topics_count must be positive when topic_name is empty"
                )
            topic_name = [f"@topic_{i}" for i in range(topics_count)]
        elif topics_count == 0:
            topics_count = len(topic_name)
        elif topics_count != len(topic_name):
            raise InvalidOperation(
                f"ModelConfig({self.name}): topics_count={topics_count} "
                f"!= len(topic_name)={len(topic_name)}"
            )

        regularizer_tau = list(self.regularizer_tau)
        if not regularizer_tau:
            regularizer_tau = [1.0] * len(self.regularizer_name)
        if len(regularizer_tau) != len(self.regularizer_name):
            raise InvalidOperation(
                f"ModelConfig({self.name}): len(regularizer_name) != len(regularizer_tau)"
            )

        class_weight = list(self.class_weight)
        if not class_weight:
            class_weight = [1.0] * len(self.class_id)
        if len(class_weight) != len(self.class_id):
            raise InvalidOperation(
                f"ModelConfig({self.name}): len(class_id) != len(class_weight)"
            )

        return self.model_copy(
            update={
                "topics_count": topics_count,
                "topic_name": topic_name,
                "regularizer_tau": regularizer_tau,
                "class_weight": class_weight,
            }
        )


class RegularizerConfig(BaseModel):
    name: str
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)


class DictionaryEntry(BaseModel):
    keyword: str
    class_id: str = "@default_class"
    value: float = 0.0


class DictionaryConfig(BaseModel):
    name: str
    entry: List[DictionaryEntry] = Field(default_factory=list)

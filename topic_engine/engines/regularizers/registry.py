#!filepath: topic_engine/engines/regularizers/registry.py
from __future__ import annotations

from typing import Dict, Type

from topic_engine.config.model_config import RegularizerConfig
from topic_engine.utils.errors import InvalidOperation
from .base import DictionaryLookup, PhiRegularizer

# ------------------------------------------------------------------
# Global registry (type -> class)
# ------------------------------------------------------------------
_REGULARIZER_REGISTRY: Dict[str, Type[PhiRegularizer]] = {}


def register_regularizer(type_name: str):
    def _wrap(cls: Type[PhiRegularizer]):
        _REGULARIZER_REGISTRY[type_name] = cls
        return cls
    return _wrap


def available_regularizers() -> list[str]:
    return sorted(_REGULARIZER_REGISTRY)


def create_regularizer(config: RegularizerConfig, dictionaries: DictionaryLookup) -> PhiRegularizer:
    cls = _REGULARIZER_REGISTRY.get(config.type)
    if cls is None:
        available = ", ".join(available_regularizers())
        raise InvalidOperation(
            f"Unknown regularizer type {config.type!r} for {config.name}. Available: {available}"
        )
    return cls(config, dictionaries)

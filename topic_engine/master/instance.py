# topic_engine/master/instance.py
from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from typing import Mapping, Optional

from topic_engine import logs
from topic_engine.config.master_config import MasterConfig
from topic_engine.config.model_config import DictionaryConfig, ModelConfig, RegularizerConfig
from topic_engine.engines.base import BatchProcessor
from topic_engine.engines.regularizers import PhiRegularizer, create_regularizer
from topic_engine.model.store import MatrixStore
from topic_engine.pipeline.data_loader import DataLoader
from topic_engine.pipeline.merger import ModelMerger
from topic_engine.pipeline.parallel.executor import ProcessorPool
from topic_engine.pipeline.scores import ScoresMerger
from topic_engine.pipeline.theta_cache import ThetaCache
from topic_engine.utils.errors import InvalidOperation


@dataclass(frozen=True)
class InstanceSchema:
    """
    Everything configurable, as one immutable snapshot.
    Writers build a replacement with dataclasses.replace() and swap it.
    """

    config: MasterConfig
    models: Mapping[str, ModelConfig] = field(default_factory=dict)
    regularizers: Mapping[str, PhiRegularizer] = field(default_factory=dict)
    dictionaries: Mapping[str, DictionaryConfig] = field(default_factory=dict)


class Instance:
    """
    Execution context owned by the MasterComponent:
    matrix store, score / theta state, processor pool, merger, data loader.
    """

    def __init__(self, config: MasterConfig, engine: Optional[BatchProcessor] = None):
        self._schema = InstanceSchema(config=config)
        self._schema_lock = threading.Lock()

        self.store = MatrixStore()
        self.scores_merger = ScoresMerger()
        self.cache_manager = ThetaCache()
        self.merger = ModelMerger(
            self.store,
            queue_max_size=config.merger_queue_max_size,
            idle_loop_ms=config.idle_loop_frequency_ms,
        )
        self.pool = ProcessorPool(
            store=self.store,
            engine=engine,
            queue_max_size=config.processor_queue_max_size,
            merger_sink=self.merger.push,
        )
        self.data_loader = DataLoader(self)
        self.pool.resize(config.processors_count)

    # --------------------------------------------------
    # schema snapshot
    # --------------------------------------------------
    @property
    def schema(self) -> InstanceSchema:
        return self._schema

    def _update_schema(self, **changes) -> None:
        with self._schema_lock:
            self._schema = dataclasses.replace(self._schema, **changes)

    def reconfigure(self, config: MasterConfig) -> None:
        self._update_schema(config=config)
        self.merger.idle_loop_ms = config.idle_loop_frequency_ms
        self.merger.resize_queue(config.merger_queue_max_size)
        self.pool.resize(config.processors_count, config.processor_queue_max_size)
        if not config.cache_theta:
            self.cache_manager.clear()

    # --------------------------------------------------
    # models / regularizers / dictionaries
    # --------------------------------------------------
    def create_or_reconfigure_model(self, config: ModelConfig) -> None:
        with self._schema_lock:
            models = dict(self._schema.models)
            models[config.name] = config
            self._schema = dataclasses.replace(self._schema, models=models)

    def dispose_model(self, name: str) -> None:
        with self._schema_lock:
            models = {k: v for k, v in self._schema.models.items() if k != name}
            self._schema = dataclasses.replace(self._schema, models=models)
        self.store.dispose(name)
        self.cache_manager.dispose_model(name)
        self.scores_merger.reset_scores(name)
        self.merger.force_reset_increments(name)
        logs.info(f"[Instance] disposed model {name}")

    def create_or_reconfigure_regularizer(self, config: RegularizerConfig) -> None:
        regularizer = create_regularizer(config, self.get_dictionary)
        with self._schema_lock:
            regularizers = dict(self._schema.regularizers)
            regularizers[config.name] = regularizer
            self._schema = dataclasses.replace(self._schema, regularizers=regularizers)

    def dispose_regularizer(self, name: str) -> None:
        with self._schema_lock:
            regularizers = {k: v for k, v in self._schema.regularizers.items() if k != name}
            self._schema = dataclasses.replace(self._schema, regularizers=regularizers)

    def create_or_reconfigure_dictionary(self, config: DictionaryConfig) -> None:
        with self._schema_lock:
            dictionaries = dict(self._schema.dictionaries)
            dictionaries[config.name] = config
            self._schema = dataclasses.replace(self._schema, dictionaries=dictionaries)

    def dispose_dictionary(self, name: str) -> None:
        with self._schema_lock:
            dictionaries = {k: v for k, v in self._schema.dictionaries.items() if k != name}
            self._schema = dataclasses.replace(self._schema, dictionaries=dictionaries)

    def get_dictionary(self, name: str) -> Optional[DictionaryConfig]:
        return self._schema.dictionaries.get(name)

    def require_dictionary(self, name: str) -> DictionaryConfig:
        dictionary = self.get_dictionary(name)
        if dictionary is None:
            raise InvalidOperation(f"Dictionary {name} does not exist")
        return dictionary

    def require_regularizer(self, name: str) -> PhiRegularizer:
        regularizer = self._schema.regularizers.get(name)
        if regularizer is None:
            raise InvalidOperation(f"Regularizer {name} does not exist")
        return regularizer

    # --------------------------------------------------
    def dispose(self) -> None:
        self.pool.stop()
        self.merger.stop()

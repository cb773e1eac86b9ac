#!filepath: topic_engine/master/master_component.py
from __future__ import annotations

import os
import threading
import time
from typing import Optional

from topic_engine import logs
from topic_engine.config.master_config import MasterConfig
from topic_engine.config.model_config import DictionaryConfig, ModelConfig, RegularizerConfig
from topic_engine.engines.base import BatchProcessor
from topic_engine.engines.phi_operations import PhiMatrixOperations
from topic_engine.model.chunk import TopicModelChunk
from topic_engine.model.phi_matrix import PhiMatrix
from topic_engine.persistence.model_codec import ModelCodec
from topic_engine.pipeline.context import WorkItem
from topic_engine.pipeline.dispatch import BatchDispatcher
from topic_engine.pipeline.parallel.types import Caller
from topic_engine.pipeline.scores import ScoreData
from topic_engine.pipeline.theta_cache import ThetaCache, ThetaMatrix
from topic_engine.utils.errors import DiskReadError, DiskWriteError, InvalidOperation
from .args import (
    UNBOUNDED,
    AddBatchArgs,
    ExportModelArgs,
    GetScoreValueArgs,
    GetThetaMatrixArgs,
    GetTopicModelArgs,
    ImportModelArgs,
    InitializeModelArgs,
    InvokeIterationArgs,
    MergeModelArgs,
    NormalizeModelArgs,
    ProcessBatchesArgs,
    ProcessBatchesResult,
    RegularizeModelArgs,
    SynchronizeModelArgs,
)
from .instance import Instance


class MasterComponent:
    """
    MasterComponent = command surface of the engine

    - one method per command
    - only process_batches / add_batch / invoke_iteration touch the processors;
      every other command works on named matrices in the store
    - the MasterConfig snapshot is replaced as a whole by reconfigure()
    """

    def __init__(self, config: MasterConfig, engine: Optional[BatchProcessor] = None):
        self._config: Optional[MasterConfig] = None
        self._engine = engine
        self._instance: Optional[Instance] = None
        self._reconfigure_lock = threading.Lock()
        logs.info("[MasterComponent] creating...")
        self.reconfigure(config)

    # --------------------------------------------------
    # lifecycle
    # --------------------------------------------------
    @property
    def config(self) -> MasterConfig:
        return self._config

    @property
    def instance(self) -> Instance:
        return self._instance

    def reconfigure(self, config: MasterConfig) -> None:
        with self._reconfigure_lock:
            self._validate_config(config)
            config = config.with_defaults()
            logs.info(
                f"[MasterComponent] reconfigure processors={config.processors_count} "
                f"queue={config.processor_queue_max_size} cache_theta={config.cache_theta}"
            )

            self._config = config
            if self._instance is None:
                self._instance = Instance(config, self._engine)
            else:
                self._instance.reconfigure(config)

    def _validate_config(self, config: MasterConfig) -> None:
        if self._config is not None and self._config.disk_path != config.disk_path:
            raise InvalidOperation("Changing disk_path is not supported.")

    def dispose(self) -> None:
        if self._instance is not None:
            logs.info("[MasterComponent] disposing...")
            self._instance.dispose()

    def __enter__(self) -> "MasterComponent":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # --------------------------------------------------
    # models / regularizers / dictionaries
    # --------------------------------------------------
    def create_or_reconfigure_model(self, config: ModelConfig) -> None:
        if config.uses_class_weights() and not config.use_sparse_bow:
            raise InvalidOperation(
                "You have configured use_sparse_bow=false. "
                "Fields ModelConfig.class_id and ModelConfig.class_weight not supported in this mode."
            )
        config = config.fix_and_validate()
        logs.info(f"[MasterComponent] create_or_reconfigure_model {config.name} topics={config.topics_count}")
        self._instance.create_or_reconfigure_model(config)

    def dispose_model(self, model_name: str) -> None:
        self._instance.dispose_model(model_name)

    def create_or_reconfigure_regularizer(self, config: RegularizerConfig) -> None:
        self._instance.create_or_reconfigure_regularizer(config)

    def dispose_regularizer(self, name: str) -> None:
        self._instance.dispose_regularizer(name)

    def create_or_reconfigure_dictionary(self, config: DictionaryConfig) -> None:
        self._instance.create_or_reconfigure_dictionary(config)

    def dispose_dictionary(self, name: str) -> None:
        self._instance.dispose_dictionary(name)

    # --------------------------------------------------
    # versioned models
    # --------------------------------------------------
    def synchronize_model(self, args: SynchronizeModelArgs) -> None:
        schema = self._instance.schema
        self._instance.merger.synchronize_model(
            args.model_name,
            decay_weight=args.decay_weight,
            apply_weight=args.apply_weight,
            regularizers=schema.regularizers,
            model_config=schema.models.get(args.model_name),
            invoke_regularizers=args.invoke_regularizers,
        )

    def initialize_model(self, args: InitializeModelArgs) -> None:
        logs.info(f"[MasterComponent] initialize_model {args.model_name} from {args.dictionary_name}")
        dictionary = self._instance.require_dictionary(args.dictionary_name)
        topic_config = ModelConfig(
            name=args.model_name,
            topics_count=args.topics_count,
            topic_name=list(args.topic_name),
        ).fix_and_validate()
        self._instance.merger.initialize_model(
            args.model_name, dictionary, topic_config.topic_name, seed=args.seed
        )

    def overwrite_topic_model(self, chunk: TopicModelChunk) -> None:
        self._instance.merger.overwrite_topic_model(chunk)

    # --------------------------------------------------
    # persistence
    # --------------------------------------------------
    @logs.catch("export failed")
    def export_model(self, args: ExportModelArgs) -> None:
        if os.path.exists(args.file_name):
            raise DiskWriteError(f"File already exists: {args.file_name}")

        phi = self._instance.store.require(args.model_name).p_wt
        if phi.token_size == 0:
            raise InvalidOperation(f"Model {args.model_name} has no tokens, export failed")

        logs.info(f"[MasterComponent] exporting model {args.model_name} to {args.file_name}")
        try:
            fout = open(args.file_name, "xb")
        except OSError as e:
            raise DiskWriteError(f"Unable to create file {args.file_name}") from e

        try:
            with fout:
                ModelCodec.write(phi, fout, chunk_bytes=self._config.export_chunk_bytes)
        except Exception:
            # never leave a partial model behind
            os.remove(args.file_name)
            raise

        logs.info(
            f"[MasterComponent] export completed, token_size={phi.token_size}, "
            f"topic_size={phi.topic_size}"
        )

    @logs.catch("import failed")
    def import_model(self, args: ImportModelArgs) -> None:
        try:
            fin = open(args.file_name, "rb")
        except OSError as e:
            raise DiskReadError(f"Unable to open file {args.file_name}") from e

        logs.info(f"[MasterComponent] importing model {args.model_name} from {args.file_name}")
        with fin:
            target = ModelCodec.read(fin, args.model_name, source=args.file_name)

        self._instance.store.set_phi_matrix(args.model_name, target)
        logs.info(
            f"[MasterComponent] import completed, token_size={target.token_size}, "
            f"topic_size={target.topic_size}"
        )

    # --------------------------------------------------
    # dispatch
    # --------------------------------------------------
    @logs.catch("process batches failed")
    def process_batches(self, args: ProcessBatchesArgs) -> ProcessBatchesResult:
        logs.info(
            f"[MasterComponent] process_batches source={args.pwt_source_name} "
            f"target={args.nwt_target_name} batches={len(args.batch_filename)}"
        )
        return BatchDispatcher(self._instance).process_batches(args)

    # --------------------------------------------------
    # matrix algebra
    # --------------------------------------------------
    def merge_model(self, args: MergeModelArgs) -> None:
        logs.info(
            f"[MasterComponent] merge_model {args.nwt_source_name} x {args.source_weight} "
            f"-> {args.nwt_target_name}"
        )
        if not args.nwt_source_name:
            raise InvalidOperation("MergeModelArgs.nwt_source_name must not be empty")
        if len(args.nwt_source_name) != len(args.source_weight):
            raise InvalidOperation(
                "MergeModelArgs.nwt_source_name and MergeModelArgs.source_weight differ in length"
            )

        store = self._instance.store
        nwt_target: Optional[PhiMatrix] = None
        for model_name, weight in zip(args.nwt_source_name, args.source_weight):
            source = store.resolve(model_name)
            if source is None:
                logs.warning(f"[MasterComponent] Model {model_name} does not exist")
                continue
            n_wt = source.n_wt

            if nwt_target is None:
                nwt_target = PhiMatrix(
                    args.nwt_target_name,
                    args.topic_name if args.topic_name else n_wt.topic_name,
                )

            if n_wt.token_size > 0:
                chunk = PhiMatrixOperations.retrieve_external_topic_model(n_wt)
                PhiMatrixOperations.apply_topic_model_operation(chunk, weight, nwt_target)

        if nwt_target is None:
            raise InvalidOperation(
                "merge_model() has not found any models to merge. "
                "Verify that at least one of the following models exist: "
                + ", ".join(args.nwt_source_name)
            )
        store.set_phi_matrix(args.nwt_target_name, nwt_target)

    def regularize_model(self, args: RegularizeModelArgs) -> None:
        logs.info(
            f"[MasterComponent] regularize_model pwt={args.pwt_source_name} "
            f"nwt={args.nwt_source_name} -> {args.rwt_target_name}"
        )
        if not args.pwt_source_name:
            raise InvalidOperation("RegularizeModelArgs.pwt_source_name is missing")
        if not args.nwt_source_name:
            raise InvalidOperation("RegularizeModelArgs.nwt_source_name is missing")
        if not args.rwt_target_name:
            raise InvalidOperation("RegularizeModelArgs.rwt_target_name is missing")

        store = self._instance.store
        n_wt = store.require(args.nwt_source_name).n_wt
        p_wt = store.require(args.pwt_source_name).p_wt

        rwt_target = PhiMatrix(args.rwt_target_name, n_wt.topic_name)
        rwt_target.reshape(n_wt)
        PhiMatrixOperations.invoke_phi_regularizers(
            self._instance.schema.regularizers,
            [(s.name, s.tau) for s in args.regularizer_settings],
            p_wt,
            n_wt,
            rwt_target,
        )
        store.set_phi_matrix(args.rwt_target_name, rwt_target)

    def normalize_model(self, args: NormalizeModelArgs) -> None:
        logs.info(
            f"[MasterComponent] normalize_model nwt={args.nwt_source_name} "
            f"rwt={args.rwt_source_name} -> {args.pwt_target_name}"
        )
        if not args.pwt_target_name:
            raise InvalidOperation("NormalizeModelArgs.pwt_target_name is missing")
        if not args.nwt_source_name:
            raise InvalidOperation("NormalizeModelArgs.nwt_source_name is missing")

        store = self._instance.store
        n_wt = store.require(args.nwt_source_name).n_wt
        r_wt = store.require(args.rwt_source_name).n_wt if args.rwt_source_name else None

        pwt_target = PhiMatrix(args.pwt_target_name, n_wt.topic_name)
        pwt_target.reshape(n_wt)
        PhiMatrixOperations.find_pwt(n_wt, pwt_target, r_wt)
        store.set_phi_matrix(args.pwt_target_name, pwt_target)

    # --------------------------------------------------
    # requests
    # --------------------------------------------------
    def request_topic_model(self, args: GetTopicModelArgs) -> TopicModelChunk:
        source = self._instance.store.require(args.model_name)
        phi = source.n_wt if args.request_type == "nwt" else source.p_wt
        return PhiMatrixOperations.retrieve_external_topic_model(
            phi,
            tokens=args.token,
            use_sparse_format=args.use_sparse_format,
            name=args.model_name,
        )

    def request_regularizer_state(self, name: str) -> dict:
        return self._instance.require_regularizer(name).internal_state()

    def request_theta_matrix(self, args: GetThetaMatrixArgs) -> Optional[ThetaMatrix]:
        """
        Without a batch: theta from the persistent cache (None if absent).
        With a batch: inferred now, in the caller's thread.
        """
        if args.batch is None:
            return self._instance.cache_manager.request_theta_matrix(
                args.model_name, use_sparse_format=args.use_sparse_format
            )

        call_cache = ThetaCache()
        output = self._instance.pool.run_inline(
            self._direct_item(args.model_name, args.batch, Caller.REQUEST_THETA)
        )
        if output.theta is not None:
            call_cache.update(output.theta)
        return call_cache.request_theta_matrix(
            args.model_name, use_sparse_format=args.use_sparse_format
        )

    def request_score(self, args: GetScoreValueArgs) -> Optional[ScoreData]:
        if args.batch is None:
            return self._instance.scores_merger.request_score(args.model_name, args.score_name)

        output = self._instance.pool.run_inline(
            self._direct_item(args.model_name, args.batch, Caller.REQUEST_SCORE)
        )
        return output.scores.get(args.score_name)

    def _direct_item(self, model_name: str, batch: str, caller: Caller) -> WorkItem:
        schema = self._instance.schema
        model_config = schema.models.get(model_name)
        if model_config is None:
            p_wt = self._instance.store.require(model_name).p_wt
            model_config = ModelConfig(
                name=model_name, topic_name=list(p_wt.topic_name)
            ).fix_and_validate()
        return WorkItem.new(
            model_name=model_name,
            batch=batch,
            model_config=model_config,
            caller=caller,
            score_names=tuple(schema.config.score_names()),
        )

    # --------------------------------------------------
    # ingestion / synchronization
    # --------------------------------------------------
    def wait_idle(self, timeout_milliseconds: int = UNBOUNDED) -> bool:
        """
        Data loader drain, then merger drain, sharing one timeout budget.
        -1 is unbounded and never decremented; an exhausted budget
        turns the second wait into a single non-blocking check.
        """
        timeout = timeout_milliseconds
        if timeout == 0:
            logs.warning("[MasterComponent] wait_idle timeout_milliseconds == 0")

        time_start = time.monotonic()
        if not self._instance.data_loader.wait_idle(timeout):
            return False

        if timeout != UNBOUNDED:
            elapsed_ms = int((time.monotonic() - time_start) * 1000)
            timeout = max(timeout - elapsed_ms, 0)

        return self._instance.merger.wait_idle(timeout)

    def invoke_iteration(self, args: InvokeIterationArgs) -> None:
        if args.reset_scores:
            self._instance.scores_merger.reset_scores(None)
        self._instance.data_loader.invoke_iteration(args.iterations_count, args.disk_path)

    def add_batch(self, args: AddBatchArgs) -> bool:
        if args.timeout_milliseconds == 0:
            logs.warning("[MasterComponent] add_batch timeout_milliseconds == 0")
        if args.reset_scores:
            self._instance.scores_merger.reset_scores(None)
        return self._instance.data_loader.add_batch(args.batch_filename, args.timeout_milliseconds)

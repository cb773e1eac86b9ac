#!filepath: topic_engine/pipeline/dispatch.py
from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import ValidationError

from topic_engine import logs
from topic_engine.config.model_config import ModelConfig
from topic_engine.master.args import ProcessBatchesArgs, ProcessBatchesResult
from topic_engine.model.phi_matrix import PhiMatrix
from topic_engine.utils.errors import InternalError, InvalidOperation
from .context import WorkItem
from .parallel.manifest import CompletionTracker
from .parallel.types import Caller, ThetaMatrixType
from .theta_cache import ThetaCache

if TYPE_CHECKING:
    from topic_engine.master.instance import Instance


class BatchDispatcher:
    """
    Synchronous dispatch-and-wait round.

    Steps (single pass, no retries):
      1. validate source / target, derive the model config
      2. publish a zeroed n_wt target (if requested)
      3. reset scores (if requested)
      4. one WorkItem per batch, registered before it is enqueued
      5. poll the CompletionTracker until every item is acknowledged,
         then publish the accumulated n_wt target once
      6. collect configured scores and call-scoped theta
    """

    def __init__(self, instance: "Instance"):
        self.instance = instance

    def process_batches(self, args: ProcessBatchesArgs) -> ProcessBatchesResult:
        inst = self.instance
        schema = inst.schema  # one snapshot for the whole round
        model_name = args.pwt_source_name

        p_wt = inst.store.require(model_name).p_wt
        if args.nwt_target_name and args.nwt_target_name == model_name:
            raise InvalidOperation(
                "ProcessBatchesArgs.pwt_source_name == ProcessBatchesArgs.nwt_target_name"
            )

        model_config = self._derive_model_config(args, p_wt)

        if args.batch_filename and inst.pool.size == 0:
            raise InternalError("No processors exist in the master component")

        if args.nwt_target_name:
            nwt_target = PhiMatrix(args.nwt_target_name, p_wt.topic_name)
            nwt_target.reshape(p_wt)
            inst.store.set_phi_matrix(args.nwt_target_name, nwt_target)

        call_cache = ThetaCache()
        cache_manager, return_theta = self._theta_destination(args.theta_matrix_type, call_cache)

        scores_merger = inst.scores_merger
        if args.reset_scores:
            scores_merger.reset_scores(model_name)

        tracker = CompletionTracker()
        score_names = tuple(schema.config.score_names())
        for batch in args.batch_filename:
            item = WorkItem.new(
                model_name=model_name,
                batch=batch,
                model_config=model_config,
                caller=Caller.PROCESS_BATCHES,
                nwt_target_name=args.nwt_target_name,
                notifiable=tracker,
                scores_merger=scores_merger,
                cache_manager=cache_manager,
                score_names=score_names,
            )
            tracker.add(item.task_id, model_name)
            inst.pool.push(item)

        tracker.wait(schema.config.idle_loop_frequency_ms)
        if args.nwt_target_name:
            inst.store.flush(args.nwt_target_name)
        logs.debug(
            f"[BatchDispatcher] {model_name}: {tracker.acknowledged_count}/"
            f"{tracker.registered_count} batches acknowledged"
        )

        result = ProcessBatchesResult()
        for score_name in score_names:
            data = scores_merger.request_score(model_name, score_name)
            if data is not None:
                result.score_data[score_name] = data

        if return_theta:
            result.theta_matrix = call_cache.request_theta_matrix(
                model_name,
                use_sparse_format=args.theta_matrix_type == ThetaMatrixType.SPARSE,
                batches=args.batch_filename,
            )
        return result

    # --------------------------------------------------
    # helpers
    # --------------------------------------------------
    def _theta_destination(self, theta_type: ThetaMatrixType, call_cache: ThetaCache):
        """-> (cache the workers write into, whether theta is returned inline)"""
        if theta_type == ThetaMatrixType.CACHE:
            if self.instance.schema.config.cache_theta:
                return self.instance.cache_manager, False
            return None, False
        if theta_type in (ThetaMatrixType.DENSE, ThetaMatrixType.SPARSE):
            return call_cache, True
        return None, False

    @staticmethod
    def _derive_model_config(args: ProcessBatchesArgs, p_wt: PhiMatrix) -> ModelConfig:
        overrides = {
            "inner_iterations_count": args.inner_iterations_count,
            "stream_name": args.stream_name,
            "reuse_theta": args.reuse_theta,
            "use_sparse_bow": args.use_sparse_bow,
        }
        try:
            config = ModelConfig(
                name=args.pwt_source_name,
                topics_count=p_wt.topic_size,
                topic_name=list(p_wt.topic_name),
                regularizer_name=list(args.regularizer_name),
                regularizer_tau=list(args.regularizer_tau),
                class_id=list(args.class_id),
                class_weight=list(args.class_weight),
                **{k: v for k, v in overrides.items() if v is not None},
            )
        except ValidationError as e:
            raise InvalidOperation(f"Invalid ProcessBatchesArgs: {e}") from e
        return config.fix_and_validate()

# topic_engine/pipeline/data_loader.py
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from topic_engine import logs
from topic_engine.utils.errors import InvalidOperation
from .context import WorkItem
from .parallel.manifest import CompletionTracker
from .parallel.types import Caller

if TYPE_CHECKING:
    from topic_engine.master.instance import Instance

BATCH_SUFFIX = ".batch"


class DataLoader:
    """
    Background batch ingestion.

    - add_batch(): one ADD_BATCH work item per enabled model
    - processor increments flow to the merger, not to a named target
    - wait_idle(): all ingested items acknowledged
    """

    def __init__(self, instance: "Instance"):
        self.instance = instance
        self._tracker = CompletionTracker()

    @property
    def tracker(self) -> CompletionTracker:
        return self._tracker

    def add_batch(self, batch: str, timeout_ms: int = -1) -> bool:
        """
        False when the processor queue stayed full for timeout_ms.
        """
        schema = self.instance.schema
        models = [m for m in schema.models.values() if m.enabled]
        if not models:
            logs.warning(f"[DataLoader] no enabled models, batch {batch} ignored")
            return True

        for model_config in models:
            item = WorkItem.new(
                model_name=model_config.name,
                batch=batch,
                model_config=model_config,
                caller=Caller.ADD_BATCH,
                notifiable=self._tracker,
                scores_merger=self.instance.scores_merger,
                cache_manager=self.instance.cache_manager if schema.config.cache_theta else None,
                score_names=tuple(schema.config.score_names()),
            )
            self._tracker.add(item.task_id, model_config.name)
            pushed = self.instance.pool.push(item, None if timeout_ms == -1 else timeout_ms)
            if not pushed:
                # never reached a processor: forget it
                self._tracker.callback(item.task_id)
                logs.warning(f"[DataLoader] processor queue full, batch {batch} rejected")
                return False

        return True

    def invoke_iteration(self, iterations_count: int, disk_path: Optional[str] = None) -> int:
        """
        Add every *.batch file under disk_path, iterations_count times.
        Returns the number of batches added.
        """
        path = disk_path or self.instance.schema.config.disk_path
        if not path:
            raise InvalidOperation("InvokeIteration requires MasterConfig.disk_path")

        batches = sorted(p for p in Path(path).glob(f"*{BATCH_SUFFIX}") if p.is_file())
        if not batches:
            logs.warning(f"[DataLoader] no {BATCH_SUFFIX} files under {path}")
            return 0

        added = 0
        for iteration in range(iterations_count):
            logs.info(f"[DataLoader] iteration {iteration + 1}/{iterations_count} batches={len(batches)}")
            for batch in batches:
                self.add_batch(str(batch), -1)
                added += 1
        return added

    def wait_idle(self, timeout_ms: int) -> bool:
        idle_loop_ms = self.instance.schema.config.idle_loop_frequency_ms
        return self._tracker.wait(idle_loop_ms, None if timeout_ms == -1 else timeout_ms)

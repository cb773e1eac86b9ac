# tests/conftest.py
from __future__ import annotations

import threading
import time
from typing import Dict, List

import numpy as np
import pytest
from loguru import logger

from topic_engine.config.master_config import MasterConfig, ScoreConfig
from topic_engine.engines.base import BatchProcessor
from topic_engine.master.master_component import MasterComponent
from topic_engine.model.phi_matrix import PhiMatrix, Token
from topic_engine.pipeline.context import ProcessorOutput, WorkItem
from topic_engine.pipeline.theta_cache import ThetaEntry


@pytest.fixture(autouse=True)
def disable_file_logger():
    logger.remove()
    logger.add(lambda msg: None)
    yield


class FakeBatchProcessor(BatchProcessor):
    """
    In-memory batches: batch name -> documents ({token: count}).

    - theta of every document is uniform over the topics
    - n_wt increment of a token = count * theta
    - score "perplexity" reports the token count of the batch
    - batch "bad" raises, batch names listed in `slow` sleep first
    """

    def __init__(self, batches: Dict[str, List[Dict[Token, float]]] | None = None):
        self.batches = batches or {}
        self.slow: Dict[str, float] = {}
        self.seen: List[str] = []
        self._lock = threading.Lock()

    def process(self, item: WorkItem, p_wt: PhiMatrix) -> ProcessorOutput:
        with self._lock:
            self.seen.append(item.batch)
        if item.batch in self.slow:
            time.sleep(self.slow[item.batch])
        if item.batch == "bad":
            raise RuntimeError("boom")

        docs = self.batches.get(item.batch, [])
        topics = p_wt.topic_size
        theta = np.full(topics, 1.0 / topics, dtype=np.float32)

        totals: Dict[Token, float] = {}
        for doc in docs:
            for token, count in doc.items():
                totals[token] = totals.get(token, 0.0) + count

        return ProcessorOutput(
            nwt_increment=[(token, count * theta) for token, count in totals.items()],
            theta=ThetaEntry(
                batch=item.batch,
                model_name=item.model_name,
                topic_name=list(p_wt.topic_name),
                item_id=list(range(len(docs))),
                item_weights=np.tile(theta, (len(docs), 1)),
            ),
            scores={"perplexity": {"raw": float(sum(totals.values())), "batches": 1}},
        )


def _token(keyword: str) -> Token:
    return Token(keyword)


@pytest.fixture
def batches() -> Dict[str, List[Dict[Token, float]]]:
    return {
        "b1": [{_token("a"): 2.0, _token("b"): 1.0}],
        "b2": [{_token("a"): 1.0}, {_token("c"): 3.0}],
        "b3": [{_token("b"): 4.0}],
    }


@pytest.fixture
def engine(batches) -> FakeBatchProcessor:
    return FakeBatchProcessor(batches)


@pytest.fixture
def master_config(tmp_path) -> MasterConfig:
    return MasterConfig(
        disk_path=str(tmp_path),
        processors_count=2,
        score_config=[ScoreConfig(name="perplexity")],
    )


@pytest.fixture
def master(master_config, engine):
    m = MasterComponent(master_config, engine)
    yield m
    m.dispose()


@pytest.fixture
def make_phi():
    """
    make_phi("M", {"a": [1, 0], "b": [0, 2]}) -> mutable PhiMatrix
    """

    def _make(name: str, rows: Dict[str, List[float]], topic_name=None) -> PhiMatrix:
        width = len(next(iter(rows.values())))
        topics = topic_name or [f"@topic_{i}" for i in range(width)]
        return PhiMatrix.from_array(
            name,
            topics,
            [Token(k) for k in rows],
            np.array(list(rows.values()), dtype=np.float32),
        )

    return _make

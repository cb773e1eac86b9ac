# topic_engine/pipeline/parallel/types.py
from enum import Enum


class Caller(str, Enum):
    """Which command issued a work item."""
    PROCESS_BATCHES = "process_batches"
    ADD_BATCH = "add_batch"
    REQUEST_THETA = "request_theta"
    REQUEST_SCORE = "request_score"


class ThetaMatrixType(str, Enum):
    NONE = "none"
    CACHE = "cache"
    DENSE = "dense"
    SPARSE = "sparse"

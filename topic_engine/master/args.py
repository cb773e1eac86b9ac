# topic_engine/master/args.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from topic_engine.model.phi_matrix import Token
from topic_engine.pipeline.parallel.types import ThetaMatrixType
from topic_engine.pipeline.scores import ScoreData
from topic_engine.pipeline.theta_cache import ThetaMatrix

UNBOUNDED = -1


# ============================================================
# dispatch
# ============================================================
@dataclass
class ProcessBatchesArgs:
    pwt_source_name: str
    batch_filename: list[str] = field(default_factory=list)
    nwt_target_name: Optional[str] = None

    # model config overrides (None = ModelConfig default)
    inner_iterations_count: Optional[int] = None
    stream_name: Optional[str] = None
    regularizer_name: list[str] = field(default_factory=list)
    regularizer_tau: list[float] = field(default_factory=list)
    class_id: list[str] = field(default_factory=list)
    class_weight: list[float] = field(default_factory=list)
    reuse_theta: Optional[bool] = None
    use_sparse_bow: Optional[bool] = None

    reset_scores: bool = False
    theta_matrix_type: ThetaMatrixType = ThetaMatrixType.CACHE


@dataclass
class ProcessBatchesResult:
    score_data: dict[str, ScoreData] = field(default_factory=dict)
    theta_matrix: Optional[ThetaMatrix] = None


# ============================================================
# matrix algebra
# ============================================================
@dataclass
class MergeModelArgs:
    nwt_target_name: str
    nwt_source_name: list[str] = field(default_factory=list)
    source_weight: list[float] = field(default_factory=list)
    topic_name: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RegularizerSettings:
    name: str
    tau: float = 1.0


@dataclass
class RegularizeModelArgs:
    pwt_source_name: str
    nwt_source_name: str
    rwt_target_name: str
    regularizer_settings: list[RegularizerSettings] = field(default_factory=list)


@dataclass
class NormalizeModelArgs:
    pwt_target_name: str
    nwt_source_name: str
    rwt_source_name: Optional[str] = None


# ============================================================
# persistence
# ============================================================
@dataclass
class ExportModelArgs:
    model_name: str
    file_name: str


@dataclass
class ImportModelArgs:
    model_name: str
    file_name: str


# ============================================================
# versioned models
# ============================================================
@dataclass
class SynchronizeModelArgs:
    model_name: str
    decay_weight: float = 0.0
    apply_weight: float = 1.0
    invoke_regularizers: bool = True


@dataclass
class InitializeModelArgs:
    model_name: str
    dictionary_name: str
    topics_count: int = 0
    topic_name: list[str] = field(default_factory=list)
    seed: Optional[int] = None


# ============================================================
# requests
# ============================================================
@dataclass
class GetTopicModelArgs:
    model_name: str
    request_type: Literal["pwt", "nwt"] = "pwt"
    token: Optional[list[Token]] = None
    use_sparse_format: bool = False


@dataclass
class GetThetaMatrixArgs:
    model_name: str
    batch: Optional[str] = None
    use_sparse_format: bool = False


@dataclass
class GetScoreValueArgs:
    model_name: str
    score_name: str
    batch: Optional[str] = None


# ============================================================
# ingestion
# ============================================================
@dataclass
class AddBatchArgs:
    batch_filename: str
    timeout_milliseconds: int = UNBOUNDED
    reset_scores: bool = False


@dataclass
class InvokeIterationArgs:
    iterations_count: int = 1
    reset_scores: bool = True
    disk_path: Optional[str] = None

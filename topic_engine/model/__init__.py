from .phi_matrix import DEFAULT_CLASS, PhiMatrix, Token
from .chunk import TopicModelChunk
from .topic_model import ModelSource, RawMatrix, TopicModel, VersionedModel
from .store import MatrixStore

__all__ = [
    "DEFAULT_CLASS",
    "PhiMatrix",
    "Token",
    "TopicModelChunk",
    "ModelSource",
    "RawMatrix",
    "TopicModel",
    "VersionedModel",
    "MatrixStore",
]

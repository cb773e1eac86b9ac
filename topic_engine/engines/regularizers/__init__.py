from .base import PhiRegularizer, aligned_rows
from .registry import available_regularizers, create_regularizer, register_regularizer

# built-in types register themselves on import
from . import decorrelator_phi, smooth_sparse_phi  # noqa: F401

__all__ = [
    "PhiRegularizer",
    "aligned_rows",
    "available_regularizers",
    "create_regularizer",
    "register_regularizer",
]

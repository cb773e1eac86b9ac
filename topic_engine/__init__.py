#!filepath: topic_engine/__init__.py

from .utils.logger import Logging, logs
from .utils.errors import (
    TopicEngineError,
    InvalidOperation,
    DiskReadError,
    DiskWriteError,
    CorruptedMessageError,
    InternalError,
)
from .config.app_config import AppConfig
from .config.master_config import MasterConfig, ScoreConfig
from .config.model_config import ModelConfig, RegularizerConfig, DictionaryConfig, DictionaryEntry
from .master.master_component import MasterComponent

__version__ = "0.3.0"

__all__ = [
    "logs", "Logging",
    "TopicEngineError",
    "InvalidOperation",
    "DiskReadError",
    "DiskWriteError",
    "CorruptedMessageError",
    "InternalError",
    "AppConfig",
    "MasterConfig",
    "ScoreConfig",
    "ModelConfig",
    "RegularizerConfig",
    "DictionaryConfig",
    "DictionaryEntry",
    "MasterComponent",
]

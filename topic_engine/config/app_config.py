#!filepath: topic_engine/config/app_config.py
import os
from typing import List

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .master_config import MasterConfig
from .model_config import ModelConfig, RegularizerConfig


def project_root() -> str:
    """
    Project root derived from this file:
    topic_engine/config/app_config.py -> topic_engine/config -> topic_engine -> root
    """
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "../../"))


class AppConfig(BaseModel):
    master: MasterConfig
    models: List[ModelConfig] = Field(default_factory=list)
    regularizers: List[RegularizerConfig] = Field(default_factory=list)

    @classmethod
    def load(cls, path: str | None = None) -> "AppConfig":
        """
        Load YAML config + .env
        - defaults to topic_engine/config/base.yml
        - TOPIC_ENGINE_DISK_PATH / TOPIC_ENGINE_PROCESSORS override the YAML
        """
        root = project_root()

        load_dotenv(os.path.join(root, ".env"))

        if path is None:
            path = os.path.join(os.path.dirname(__file__), "base.yml")

        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        master = dict(raw.get("master") or {})
        disk_path = os.getenv("TOPIC_ENGINE_DISK_PATH")
        if disk_path:
            master["disk_path"] = disk_path
        processors = os.getenv("TOPIC_ENGINE_PROCESSORS")
        if processors:
            master["processors_count"] = int(processors)
        raw["master"] = master

        return cls(**raw)

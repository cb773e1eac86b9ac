#!filepath: topic_engine/utils/logger.py
import os
import sys
from functools import wraps
from time import perf_counter
from typing import Callable, Optional

from loguru import logger


class Logging:
    """
    Engine-wide logging facade over loguru
    ---------------------------------------
    - stderr sink by default
    - optional daily-rotated file sink with retention
    - function-level decorator for error + timing logs
    ---------------------------------------
    """

    def __init__(
        self,
        log_dir: Optional[str] = None,
        rotation: str = "1 day",
        retention: str = "30 days",
        log_level: str = "INFO",
    ):
        self.log_dir = log_dir
        self.rotation = rotation
        self.retention = retention
        self.level = log_level
        self._configure()

    def _configure(self) -> None:
        """
        Replace every installed sink. Safe to call again on reconfiguration.
        """
        logger.remove()

        logger.add(
            sink=sys.stderr,
            level=self.level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {thread.name} | {message}",
        )

        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
            logger.add(
                sink=f"{self.log_dir}/{{time:YYYY-MM-DD}}.log",
                rotation=self.rotation,
                retention=self.retention,
                level=self.level,
                format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {thread.name} | {message}",
                enqueue=True,  # worker threads log concurrently
                backtrace=True,
                diagnose=True,
            )

    def configure(self, cfg) -> None:
        """
        Apply a LogConfig (dir / rotation / retention / level).
        """
        self.log_dir = cfg.dir
        self.rotation = cfg.rotation
        self.retention = cfg.retention
        self.level = cfg.level
        self._configure()
        logger.info(f"[Logging] configured level={self.level} dir={self.log_dir}")

    # ----------- log methods -----------
    def debug(self, msg: str, *args, **kwargs):
        logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        logger.error(msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        logger.exception(msg, *args, **kwargs)

    # ---------- decorator ----------
    def catch(
        self,
        msg: str = "Exception occurred",
        log_time: bool = True,
    ) -> Callable:
        """
        Log the traceback of any exception and re-raise it;
        optionally log the wall-time of successful calls.
        """

        def decorator(func: Callable):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start = perf_counter()

                try:
                    result = func(*args, **kwargs)
                except Exception:
                    logger.opt(depth=1).exception(f"[ERROR] {func.__qualname__}: {msg}")
                    raise

                if log_time:
                    cost = perf_counter() - start
                    logger.debug(f"[TIME] {func.__qualname__} took {cost:.4f}s")

                return result

            return wrapper

        return decorator


logs = Logging()

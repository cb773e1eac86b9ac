# topic_engine/utils/errors.py


class TopicEngineError(RuntimeError):
    """
    Base class for every error raised by the coordination core.
    """


class InvalidOperation(TopicEngineError):
    """
    Bad arguments, missing named matrix, source == target,
    or an unsupported option combination.
    Surfaced to the caller, never retried.
    """


class DiskReadError(TopicEngineError):
    """File missing or unreadable."""


class DiskWriteError(TopicEngineError):
    """Destination cannot be created or already exists."""


class CorruptedMessageError(TopicEngineError):
    """
    Malformed or truncated chunk, unexpected version byte,
    non-positive chunk length.
    """


class InternalError(TopicEngineError):
    """
    Misconfigured engine (e.g. no processors), not a user input problem.
    """

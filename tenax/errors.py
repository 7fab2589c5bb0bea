from __future__ import annotations


class TenaxError(Exception):
    """Base class for errors raised by tenax."""


class BatchPayloadError(TenaxError, ValueError):
    """A manually supplied batch could not be parsed at all."""


class ResourceError(TenaxError, RuntimeError):
    """A file, store or model needed by the operation is unavailable."""


class EmbeddingUnavailableError(ResourceError):
    pass


class IndexLockTimeout(ResourceError):
    pass


class TranscriptNotFoundError(ResourceError):
    pass


class ConsistencyError(TenaxError):
    """The operation would leave the index or the vector store inconsistent."""


class DimensionMismatchError(ConsistencyError, ValueError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SupersessionError(ConsistencyError, ValueError):
    pass


class StoreClosedError(ConsistencyError, RuntimeError):
    def __init__(self, message: str = "store closed") -> None:
        super().__init__(message)

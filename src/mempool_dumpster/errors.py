from typing import Optional


class MempoolDumpsterError(Exception):
    """Base class for all sync and conversion failures"""


class CatalogUnavailable(MempoolDumpsterError):
    """The provider index could not be retrieved"""


class NotFound(MempoolDumpsterError):
    """The requested day or month is not published"""


class InvalidDateKey(MempoolDumpsterError, ValueError):
    def __init__(self, key: str):
        super().__init__(f"invalid date key {key!r}, expected YYYY-MM-DD or YYYY-MM")
        self.key = key


class FetchError(MempoolDumpsterError):
    """Base class for fetch failures"""


class PermanentFetchError(FetchError):
    def __init__(self, url: str, status: int, message: str = ""):
        super().__init__(f"{url} rejected with HTTP {status} {message}".rstrip())
        self.url = url
        self.status = status


class TruncatedTransfer(FetchError):
    def __init__(self, url: str, expected: Optional[int], received: int):
        super().__init__(
            f"{url} transfer truncated: expected {expected} bytes, received {received}"
        )
        self.url = url
        self.expected = expected
        self.received = received


class FetchFailed(FetchError):
    def __init__(self, url: str, attempts: int, last_error: BaseException):
        super().__init__(f"{url} failed after {attempts} attempts: {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class SchemaValidationError(MempoolDumpsterError):
    def __init__(self, message: str, total: int = 0, skipped: int = 0):
        super().__init__(message)
        self.total = total
        self.skipped = skipped


class StoreIOError(MempoolDumpsterError):
    """Local filesystem fault while staging or committing an output file"""


class SyncCancelled(MempoolDumpsterError):
    """Raised inside a pair when cancellation was requested"""


__all__ = [
    "MempoolDumpsterError",
    "CatalogUnavailable",
    "NotFound",
    "InvalidDateKey",
    "FetchError",
    "PermanentFetchError",
    "TruncatedTransfer",
    "FetchFailed",
    "SchemaValidationError",
    "StoreIOError",
    "SyncCancelled",
]

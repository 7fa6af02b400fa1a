"""Custom exceptions for the rate limiter."""

from typing import Optional


class RateLimiterException(Exception):
    """Base class for rate limiter exceptions."""

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class StoreError(RateLimiterException):
    """Base class for bucket store failures.

    Subclasses form the store's three-way taxonomy: not-found, conflict,
    unavailable. Each one tells the limiter something different to do next.
    """

    def __init__(self, bucket_key: str, message: str):
        self.bucket_key = bucket_key
        super().__init__(message)


class BucketNotFoundError(StoreError):
    """Raised by ``get`` when no record exists for the key."""

    def __init__(self, bucket_key: str):
        super().__init__(bucket_key, f"Bucket {bucket_key} not found")


class VersionConflictError(StoreError):
    """Raised when a conditional update loses the optimistic concurrency race.

    Fresh data exists in the store and should be re-read immediately.
    ``actual_version`` is None when the record vanished (expired) in between.
    """

    def __init__(
        self,
        bucket_key: str,
        expected_version: int,
        actual_version: Optional[int] = None,
    ):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            bucket_key,
            f"Version conflict on {bucket_key}: expected {expected_version}, "
            f"found {actual_version}",
        )


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached or did not answer in time."""

    def __init__(self, bucket_key: str, cause: Optional[BaseException] = None):
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause else "unavailable"
        super().__init__(bucket_key, f"Bucket store unavailable for {bucket_key} ({detail})")


class InvalidAcquireRequestError(RateLimiterException, ValueError):
    """Raised for invalid usage: unknown dimension or bad token count.

    Never retried.
    """

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class WriteOutcomeUnknownError(StoreUnavailableError):
    """Raised when a conditional update failed in flight.

    The store may or may not have applied ``record``; the next read tells.
    """

    def __init__(self, bucket_key: str, record, cause: Optional[BaseException] = None):
        self.record = record
        super().__init__(bucket_key, cause)

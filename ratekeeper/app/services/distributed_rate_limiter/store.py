"""Bucket store contract.

A bucket store is the only shared mutable state in the system. Each backend
offers three operations and reports failures through a three-way taxonomy:

- ``BucketNotFoundError``: ``get`` found nothing, create it lazily
- ``VersionConflictError``: another writer won, re-read immediately
- ``StoreUnavailableError``: the store cannot be reached, retry then fall back
"""

from abc import ABC, abstractmethod

from .models import BucketRecord


class BucketStore(ABC):
    """Abstract base class for bucket store backends."""

    name: str = "store"

    @abstractmethod
    async def get(self, bucket_key: str) -> BucketRecord:
        """Read the record for ``bucket_key``.

        Raises:
            BucketNotFoundError: No record exists
            StoreUnavailableError: The store could not be reached
        """

    @abstractmethod
    async def create_if_absent(self, bucket_key: str, record: BucketRecord) -> BucketRecord:
        """Insert ``record`` unless one already exists, and return what is stored.

        A writer that loses the creation race gets the winner's record back,
        never an error.

        Raises:
            StoreUnavailableError: The store could not be reached
        """

    @abstractmethod
    async def conditional_update(
        self, bucket_key: str, expected_version: int, record: BucketRecord
    ) -> BucketRecord:
        """Replace the stored record only if its version equals ``expected_version``.

        Nothing is written when the check fails.

        Raises:
            VersionConflictError: The stored version differs, or the record is gone
            StoreUnavailableError: The store could not be reached
        """

    async def close(self) -> None:
        """Release backend resources."""

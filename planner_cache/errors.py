from __future__ import annotations

from typing import Optional


class CacheError(Exception):
    """Base class for local cache and sync failures."""


class StorageUnavailable(CacheError):
    """The local database could not be opened or upgraded."""


class StorageOperationFailed(CacheError):
    """A single local read/write failed; surfaced to the caller, not retried."""


class UnknownStore(StorageOperationFailed):
    def __init__(self, store: str) -> None:
        super().__init__(f"Unknown store {store!r}")
        self.store = store


class RemoteOperationFailed(CacheError):
    """A remote create/update/delete did not succeed.

    The sync engine keeps the pending operation queued when this is raised.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnknownOperationType(CacheError):
    def __init__(self, op_type: object, op_id: object = None) -> None:
        super().__init__(f"Unknown operation type {op_type!r} (id={op_id!r})")
        self.op_type = op_type
        self.op_id = op_id

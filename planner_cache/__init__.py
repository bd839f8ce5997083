"""Offline-first local cache, pending-operation queue and sync engine."""

from .errors import (
    CacheError,
    RemoteOperationFailed,
    StorageOperationFailed,
    StorageUnavailable,
    UnknownOperationType,
    UnknownStore,
)
from .settings import DEFAULT_STORES, PENDING_SYNC_STORE, SCHEMA_VERSION
from .local_store import LocalStore
from .kv_store import KeyValueStore
from .operations import CreateOp, DeleteOp, OpType, PendingOperation, UpdateOp
from .pending_queue import PendingOperationQueue
from .connectivity import ConnectivityMonitor
from .realtime import ChangeEvent, ChangeEventType, QueueChangeChannel, RealtimeChangeListener
from .sync_engine import SyncEngine, SyncPhase, SyncResult
from .context import CacheContext, open_context

__all__ = [
    "CacheError",
    "RemoteOperationFailed",
    "StorageOperationFailed",
    "StorageUnavailable",
    "UnknownOperationType",
    "UnknownStore",
    "DEFAULT_STORES",
    "PENDING_SYNC_STORE",
    "SCHEMA_VERSION",
    "LocalStore",
    "KeyValueStore",
    "CreateOp",
    "DeleteOp",
    "OpType",
    "PendingOperation",
    "UpdateOp",
    "PendingOperationQueue",
    "ConnectivityMonitor",
    "ChangeEvent",
    "ChangeEventType",
    "QueueChangeChannel",
    "RealtimeChangeListener",
    "SyncEngine",
    "SyncPhase",
    "SyncResult",
    "CacheContext",
    "open_context",
]

"""Pending operation variants and their persisted record shape.

A queued operation is one of three variants, each carrying only the fields it
needs. The persisted record keeps the camel-case layout of the queue
(``itemId``, ``lastError``) so existing queues stay readable.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional, Union

from planner_cache.errors import UnknownOperationType


class OpType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class CreateOp:
    store: str
    payload: Dict[str, Any]

    type = OpType.CREATE

    @property
    def item_id(self) -> Any:
        return self.payload.get("id")


@dataclass(frozen=True)
class UpdateOp:
    store: str
    item_id: Any
    payload: Dict[str, Any]

    type = OpType.UPDATE


@dataclass(frozen=True)
class DeleteOp:
    store: str
    item_id: Any

    type = OpType.DELETE


Operation = Union[CreateOp, UpdateOp, DeleteOp]


@dataclass(frozen=True)
class PendingOperation:
    id: str
    op: Operation
    timestamp: str
    attempts: int = 0
    last_error: Optional[str] = None

    @property
    def entity_key(self) -> tuple[str, Any]:
        return (self.op.store, self.op.item_id)

    def failed(self, error: str) -> "PendingOperation":
        return replace(self, attempts=self.attempts + 1, last_error=error)


_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_operation_id(now_ms: int) -> str:
    """Queue id from issue time plus a random suffix, e.g. ``1700000000000-k3j9x0a1b``."""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"{now_ms}-{suffix}"


def to_record(pending: PendingOperation) -> Dict[str, Any]:
    op = pending.op
    record: Dict[str, Any] = {
        "id": pending.id,
        "type": op.type.value,
        "store": op.store,
        "timestamp": pending.timestamp,
        "attempts": pending.attempts,
    }
    if isinstance(op, (UpdateOp, DeleteOp)):
        record["itemId"] = op.item_id
    if isinstance(op, (CreateOp, UpdateOp)):
        record["payload"] = op.payload
    if pending.last_error is not None:
        record["lastError"] = pending.last_error
    return record


def from_record(record: Dict[str, Any]) -> PendingOperation:
    """Rebuild a queued operation; raises UnknownOperationType for anything else."""
    op_type = record.get("type")
    store = record.get("store")
    # Older queues carried the payload under "data".
    payload = record.get("payload", record.get("data")) or {}

    if op_type == OpType.CREATE.value:
        op: Operation = CreateOp(store=store, payload=payload)
    elif op_type == OpType.UPDATE.value:
        op = UpdateOp(store=store, item_id=record.get("itemId"), payload=payload)
    elif op_type == OpType.DELETE.value:
        op = DeleteOp(store=store, item_id=record.get("itemId"))
    else:
        raise UnknownOperationType(op_type, record.get("id"))

    return PendingOperation(
        id=record["id"],
        op=op,
        timestamp=record.get("timestamp", ""),
        attempts=int(record.get("attempts") or 0),
        last_error=record.get("lastError"),
    )

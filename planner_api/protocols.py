from __future__ import annotations

from typing import Any, Dict, Optional

from planner_cache.realtime import ChangeEvent, ChangeEventType

SYNC_REQUIRED = "sync_required"
CHANGE = "change"


def make_message(
    msg_type: str,
    store: str,
    ts_ms: int,
    data: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "type": msg_type,
        "store": store,
        "ts_ms": ts_ms,
        "data": data,
    }


def make_change_message(store: str, event: ChangeEvent, ts_ms: int) -> Dict[str, Any]:
    return make_message(
        msg_type=CHANGE,
        store=store,
        ts_ms=ts_ms,
        data={
            "eventType": event.event_type.value.upper(),
            "new": event.new_record,
            "old": event.old_record,
        },
    )


def parse_change_message(payload: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Decode one feed message into a ChangeEvent.

    Accepts the enveloped form ``{"type": "change", "data": {...}}`` as well
    as a bare ``{"eventType": ..., "new": ..., "old": ...}`` body. Returns
    None for anything that is not a change.
    """
    if not isinstance(payload, dict):
        return None
    msg_type = payload.get("type")
    if msg_type is not None and msg_type != CHANGE:
        return None
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return None

    raw_type = str(data.get("eventType") or data.get("event_type") or "").strip().lower()
    try:
        event_type = ChangeEventType(raw_type)
    except ValueError:
        return None

    new_record = data.get("new", data.get("new_record"))
    old_record = data.get("old", data.get("old_record"))
    return ChangeEvent(
        event_type=event_type,
        new_record=new_record if isinstance(new_record, dict) and new_record else None,
        old_record=old_record if isinstance(old_record, dict) and old_record else None,
    )


def is_sync_required(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("type") == SYNC_REQUIRED

from planner_api.protocols import (
    is_sync_required,
    make_change_message,
    make_message,
    parse_change_message,
)
from planner_cache.realtime import ChangeEvent, ChangeEventType


def test_enveloped_change_message():
    msg = {
        "type": "change",
        "store": "goals",
        "ts_ms": 1,
        "data": {"eventType": "UPDATE", "new": {"id": "g1", "title": "x"}, "old": {"id": "g1"}},
    }
    event = parse_change_message(msg)
    assert event == ChangeEvent(ChangeEventType.UPDATE, {"id": "g1", "title": "x"}, {"id": "g1"})


def test_bare_body_with_snake_case_keys():
    event = parse_change_message({"event_type": "delete", "old_record": {"id": "h1"}, "new_record": {}})
    assert event.event_type is ChangeEventType.DELETE
    assert event.old_record == {"id": "h1"}
    assert event.new_record is None


def test_non_change_messages_are_ignored():
    assert parse_change_message({"type": "heartbeat"}) is None
    assert parse_change_message({"eventType": "TRUNCATE"}) is None
    assert parse_change_message({"type": "change", "data": "oops"}) is None
    assert parse_change_message(["not", "a", "dict"]) is None


def test_built_change_message_parses_back():
    event = ChangeEvent(ChangeEventType.INSERT, new_record={"id": "c1"})
    msg = make_change_message("kanban_cards", event, ts_ms=42)
    assert msg["data"]["eventType"] == "INSERT"
    assert msg["store"] == "kanban_cards"
    assert parse_change_message(msg) == event


def test_sync_required_control_message():
    assert is_sync_required(make_message("sync_required", "goals", 1, {}))
    assert not is_sync_required({"type": "change"})
    assert not is_sync_required(None)

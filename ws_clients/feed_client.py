from __future__ import annotations

import asyncio
import json
import os
from typing import Optional

import websockets

from planner_api.protocols import parse_change_message


def _env(name: str, default: Optional[str] = None) -> str:
    value = os.getenv(name, default)
    if value is None:
        raise RuntimeError(f"Missing env var: {name}")
    return value


async def main() -> None:
    # Usage:
    # STORE=goals python ws_clients/feed_client.py
    # FEED_HOST=localhost FEED_PORT=8765 STORE=kanban_cards python ws_clients/feed_client.py
    host = os.getenv("FEED_HOST", "localhost")
    port = os.getenv("FEED_PORT", "8765")
    store = _env("STORE", "goals")

    url = f"ws://{host}:{port}/changes?store={store}"
    print(f"Connecting to {url}")
    async with websockets.connect(url) as ws:
        print("Connected.")
        async for message in ws:
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                print(message)
                continue
            event = parse_change_message(payload)
            if event is None:
                print(json.dumps(payload, ensure_ascii=False))
                continue
            record = event.new_record or event.old_record or {}
            print(f"{event.event_type.value:<6} {store}/{record.get('id')} {json.dumps(record, ensure_ascii=False)}")


if __name__ == "__main__":
    asyncio.run(main())

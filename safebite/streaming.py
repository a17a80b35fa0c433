import json
from typing import Any, AsyncIterator, Dict, Iterable, List, Tuple

from .session_store import TERMINAL_TYPES, SessionStore


SESSION_NOT_FOUND = {"message": "session not found"}


def sse_format(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def iter_session_events(store: SessionStore, session_id: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
    """Yield ("step", event) pairs for history then live events, ending with one terminal pair.

    Unknown sessions yield a single ("error", ...) pair. Finished sessions replay and stop
    without registering a live subscriber.
    """
    subscription = await store.subscribe(session_id)
    if subscription is None:
        yield "error", dict(SESSION_NOT_FOUND)
        return
    try:
        for event in subscription.history:
            yield "step", event
        if subscription.queue is None:
            if subscription.terminal is not None:
                yield subscription.terminal["type"], subscription.terminal["data"]
            return
        while True:
            item = await subscription.queue.get()
            yield item["type"], item["data"]
            if item["type"] in TERMINAL_TYPES:
                return
    finally:
        await store.unsubscribe(session_id, subscription)


async def sse_session_stream(store: SessionStore, session_id: str) -> AsyncIterator[str]:
    async for event, data in iter_session_events(store, session_id):
        yield sse_format(event, data)


def materialize_steps(events: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse append-only step events into one entry per step id (last write wins).

    Steps keep the position where their id first appeared.
    """
    latest: Dict[str, Dict[str, Any]] = {}
    for event in events:
        step_id = event.get("id")
        if step_id is None:
            continue
        latest[step_id] = event
    return list(latest.values())

"""
In-process change notifications.

The database layer publishes one ChangeEvent per successful write; listeners
open a named Channel on a collection and receive the events in publish order.
Publishing is thread-safe: each channel hands events to the event loop it was
opened on, so writes performed in worker threads still reach async listeners.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
DELETE = "delete"
EVENT_TYPES = (INSERT, UPDATE, DELETE)

Handler = Callable[["ChangeEvent"], Union[None, Awaitable[None]]]


@dataclass
class ChangeEvent:
    event_type: str
    collection: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventType": self.event_type,
            "collection": self.collection,
            "new": self.new,
            "old": self.old,
            "committed_at": self.committed_at.isoformat(),
        }


class Channel:
    """A named subscription to one collection's change events."""

    def __init__(self, hub: "ChangeHub", name: str, collection: str, handler: Handler):
        self.hub = hub
        self.name = name
        self.collection = collection
        self.handler = handler
        self.loop = asyncio.get_running_loop()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task = self.loop.create_task(self._pump())

    def deliver(self, event: ChangeEvent) -> None:
        self.loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                result = self.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Change handler failed on channel %s", self.name)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.hub._remove(self)
        self._task.cancel()


class ChangeHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._channels: Dict[str, Channel] = {}

    def channel(self, name: str, collection: str, handler: Handler) -> Channel:
        """Open a channel. Must be called from inside a running event loop."""
        with self._lock:
            if name in self._channels:
                raise ValueError(f"Channel {name!r} is already open")
            ch = Channel(self, name, collection, handler)
            self._channels[name] = ch
        logger.debug("Opened channel %s on %s", name, collection)
        return ch

    def _remove(self, ch: Channel) -> None:
        with self._lock:
            if self._channels.get(ch.name) is ch:
                del self._channels[ch.name]
        logger.debug("Closed channel %s", ch.name)

    def channels(self, collection: Optional[str] = None) -> List[Channel]:
        with self._lock:
            chans = list(self._channels.values())
        if collection is None:
            return chans
        return [ch for ch in chans if ch.collection == collection]

    def publish(self, collection: str, event_type: str, new: Optional[dict] = None, old: Optional[dict] = None) -> ChangeEvent:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type {event_type!r}")
        event = ChangeEvent(event_type=event_type, collection=collection, new=new, old=old)
        for ch in self.channels(collection):
            try:
                ch.deliver(event)
            except RuntimeError:
                # the channel's loop has been closed under it
                logger.warning("Dropping channel %s: event loop is closed", ch.name)
                self._remove(ch)
        return event

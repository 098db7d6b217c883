"""User-facing transient notifications (the dashboard's toasts)."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    title: str
    description: str = ""
    variant: str = "default"  # "default" or "destructive"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_error(self) -> bool:
        return self.variant == "destructive"


class Notifier:
    """Collects notifications and forwards them to an optional sink."""

    def __init__(self, sink: Optional[Callable[[Notification], None]] = None, limit: int = 50):
        self.sink = sink
        self.limit = limit
        self.history: List[Notification] = []

    def _push(self, note: Notification) -> Notification:
        self.history.append(note)
        del self.history[:-self.limit]
        if self.sink is not None:
            self.sink(note)
        return note

    def success(self, title: str, description: str = "") -> Notification:
        logger.info("%s: %s", title, description)
        return self._push(Notification(title, description))

    def error(self, title: str, description: str = "") -> Notification:
        logger.warning("%s: %s", title, description)
        return self._push(Notification(title, description, variant="destructive"))

    @property
    def errors(self) -> List[Notification]:
        return [n for n in self.history if n.is_error]

    def clear(self) -> None:
        self.history.clear()

"""
Admin dashboard: screen state, visitor statistics and message handling.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import ValidationError

from notifications import Notifier
from schemas import ANALYTICS, CONTACT_SUBMISSIONS, SITE_SETTINGS, SiteSettings
from store import ContentStore
from synchronizer import describe_validation

logger = logging.getLogger(__name__)

TABS = ("overview", "messages", "analytics", "hire-view", "settings")
ANALYTICS_WINDOW = 100


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DashboardState:
    """Everything the dashboard screen holds, changed only through the setters."""

    settings: SiteSettings = field(default_factory=SiteSettings)
    active_tab: str = "overview"
    debug_mode: bool = False
    debug_logs: Deque[str] = field(default_factory=lambda: deque(maxlen=100))
    last_activity: datetime = field(default_factory=_now)

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity = now or _now()

    def seconds_until_timeout(self, now: Optional[datetime] = None) -> float:
        deadline = self.last_activity + timedelta(minutes=self.settings.session_timeout_minutes)
        return max(0.0, (deadline - (now or _now())).total_seconds())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.seconds_until_timeout(now) == 0.0

    def set_tab(self, tab: str) -> None:
        if tab not in TABS:
            raise ValueError(f"Unknown tab {tab!r}")
        self.active_tab = tab
        self.touch()

    def set_settings(self, **changes: Any) -> SiteSettings:
        """Apply changes atomically; raises ValidationError and keeps the old settings on bad input."""
        self.settings = SiteSettings.model_validate({**self.settings.model_dump(), **changes})
        self.touch()
        return self.settings

    def set_debug(self, enabled: bool) -> None:
        self.debug_mode = enabled
        if not enabled:
            self.debug_logs.clear()

    def log(self, message: str) -> None:
        if self.debug_mode:
            self.debug_logs.append(f"{_now().isoformat()} {message}")


@dataclass
class DashboardStats:
    total_visitors: int = 0
    employer_views: int = 0
    portfolio_views: int = 0
    unread_messages: int = 0


def compute_stats(analytics: List[Dict[str, Any]], contacts: List[Dict[str, Any]]) -> DashboardStats:
    return DashboardStats(
        total_visitors=len(analytics),
        employer_views=sum(1 for a in analytics if a.get("user_flow") == "employer"),
        portfolio_views=sum(1 for a in analytics if a.get("user_flow") == "viewer"),
        unread_messages=sum(1 for c in contacts if c.get("status") == "unread"),
    )


class AdminDashboard:
    def __init__(self, store: ContentStore, notifier: Optional[Notifier] = None, state: Optional[DashboardState] = None):
        self.store = store
        self.notifier = notifier or Notifier()
        self.state = state or DashboardState()
        self.contacts: List[Dict[str, Any]] = []
        self.analytics: List[Dict[str, Any]] = []
        self.stats = DashboardStats()

    async def refresh(self) -> bool:
        try:
            contacts, analytics = await asyncio.gather(
                self.store.select(CONTACT_SUBMISSIONS, order_by="created_at", descending=True),
                self.store.select(ANALYTICS, order_by="created_at", descending=True, limit=ANALYTICS_WINDOW),
            )
        except Exception as exc:
            logger.exception("Error fetching dashboard data")
            self.notifier.error("Error loading dashboard", str(exc))
            return False
        self.contacts = contacts
        self.analytics = analytics
        self.stats = compute_stats(analytics, contacts)
        self.state.log(f"refreshed: {len(contacts)} messages, {len(analytics)} visits")
        return True

    async def mark_as_read(self, submission_id: str) -> bool:
        try:
            row = await self.store.update(CONTACT_SUBMISSIONS, submission_id, {"status": "read"})
        except Exception as exc:
            logger.exception("Error updating message")
            self.notifier.error("Error updating message", str(exc))
            return False
        self.contacts = [row if c["id"] == submission_id else c for c in self.contacts]
        self.stats = compute_stats(self.analytics, self.contacts)
        self.notifier.success("Message marked as read", "The message status has been updated.")
        return True

    async def load_settings(self) -> SiteSettings:
        try:
            row = await self.store.single(SITE_SETTINGS)
        except Exception as exc:
            logger.exception("Error loading settings")
            self.notifier.error("Error loading settings", str(exc))
            return self.state.settings
        if row:
            self.state.settings = SiteSettings.model_validate(
                {k: v for k, v in row.items() if k in SiteSettings.model_fields}
            )
        return self.state.settings

    async def save_settings(self, **changes: Any) -> bool:
        previous = self.state.settings
        try:
            settings = self.state.set_settings(**changes)
        except ValidationError as exc:
            self.notifier.error("Invalid settings", describe_validation(exc))
            return False
        try:
            await self.store.upsert_single(SITE_SETTINGS, settings.model_dump())
        except Exception as exc:
            logger.exception("Error saving settings")
            self.state.settings = previous
            self.notifier.error("Error saving settings", str(exc))
            return False
        self.notifier.success("Settings saved", "Your changes are live.")
        return True

"""
Keeps an in-memory mirror of the hire view collections in step with the store.

State changes come from three places:

* ``load()`` replaces every collection at once from a fresh fetch;
* change events from the hub patch one row and schedule a reconciling load;
* local writes (``update``, ``create``, ``delete``) patch optimistically and
  fall back to the store's answer.

The store is always the system of record. A failed update is repaired by
reloading, never by inverting the patch, so server-side effects such as
``updated_at`` cannot drift.
"""

import asyncio
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from notifications import Notifier
from realtime import DELETE, INSERT, UPDATE, ChangeEvent, ChangeHub
from schemas import CONTACT_FIELDS, EXPERIENCE, HIRE_COLLECTIONS, SECTIONS, SKILLS, validate_row
from store import ContentStore

logger = logging.getLogger(__name__)

LABELS = {
    SECTIONS: "Section",
    SKILLS: "Skill",
    EXPERIENCE: "Experience",
    CONTACT_FIELDS: "Contact field",
}


class SyncError(Exception):
    def __init__(self, errors: Sequence[BaseException]):
        self.errors = list(errors)
        super().__init__("Database errors: " + ", ".join(str(e) for e in self.errors))


def describe_validation(exc: ValidationError) -> str:
    return "; ".join(
        "{}: {}".format(".".join(str(p) for p in err["loc"]) or "row", err["msg"])
        for err in exc.errors()
    )


def _by_order(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # sorted() is stable, so equal order_index values keep their current order
    return sorted(rows, key=lambda r: r.get("order_index", 0))


class Synchronizer:
    def __init__(
        self,
        store: ContentStore,
        hub: ChangeHub,
        notifier: Optional[Notifier] = None,
        *,
        role: str = "admin",
        active_only: bool = False,
        reconcile_delay: float = 0.2,
        retry_base_delay: float = 1.0,
        max_retries: int = 3,
        collections: Sequence[str] = HIRE_COLLECTIONS,
    ):
        self.store = store
        self.hub = hub
        self.notifier = notifier or Notifier()
        self.role = role
        self.active_only = active_only
        self.reconcile_delay = reconcile_delay
        self.retry_base_delay = retry_base_delay
        self.max_retries = max_retries
        self.collections = tuple(collections)

        self.data: Dict[str, List[Dict[str, Any]]] = {name: [] for name in self.collections}
        self.last_synced: Optional[datetime] = None
        self.loading = False
        self.error: Optional[str] = None
        self.session_id: Optional[str] = None
        self.channels = []
        self._tasks = set()
        self._reconcile_pending = False

    # ---- reading ----

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return self.data[collection]

    def find(self, collection: str, row_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in self.data[collection] if r["id"] == row_id), None)

    async def _fetch_all(self) -> Dict[str, List[Dict[str, Any]]]:
        filters = {"is_active": True} if self.active_only else None
        results = await asyncio.gather(
            *(self.store.select(name, filters=filters, order_by="order_index") for name in self.collections),
            return_exceptions=True,
        )
        for res in results:
            if isinstance(res, asyncio.CancelledError):
                raise res
        errors = [res for res in results if isinstance(res, BaseException)]
        if errors:
            raise SyncError(errors)
        return dict(zip(self.collections, results))

    async def load(self, show_feedback: bool = False) -> bool:
        """Fetch all collections; on any failure leave local state untouched."""
        self.loading = True
        self.error = None
        attempt = 0
        try:
            while True:
                try:
                    fresh = await self._fetch_all()
                    break
                except SyncError as exc:
                    if attempt >= self.max_retries:
                        self.error = str(exc)
                        logger.error("Load failed after %d retries: %s", attempt, exc)
                        self.notifier.error("Error loading data", str(exc))
                        return False
                    delay = self.retry_base_delay * (2 ** attempt)
                    attempt += 1
                    logger.warning("Load failed (%s), retry %d in %.1fs", exc, attempt, delay)
                    await asyncio.sleep(delay)
        finally:
            self.loading = False

        self.data = fresh
        self.last_synced = datetime.now(timezone.utc)
        if show_feedback:
            self.notifier.success("Data Refreshed", "All hire view data has been updated successfully.")
        return True

    # ---- change feed ----

    def subscribe(self):
        """Open one channel per collection; returns the matching teardown callable."""
        self.close()
        self.session_id = "{}_{}_{}".format(self.role, int(time.time() * 1000), secrets.token_hex(5))
        for name in self.collections:
            self.channels.append(self.hub.channel(f"{self.session_id}_{name}", name, self.handle_change))
        logger.info("Subscribed %s to %d collections", self.session_id, len(self.channels))
        return self.close

    def handle_change(self, event: ChangeEvent) -> None:
        self.apply_change(event)
        self._schedule_reconcile()

    def apply_change(self, event: ChangeEvent) -> None:
        rows = self.data.get(event.collection)
        if rows is None:
            return
        logger.debug("%s: %s on %s", self.session_id, event.event_type, event.collection)
        if event.event_type in (INSERT, UPDATE) and event.new:
            if self.active_only and not event.new.get("is_active", True):
                # deactivated rows leave the public mirror
                self.data[event.collection] = [r for r in rows if r["id"] != event.new["id"]]
                return
            self._merge(event.collection, event.new)
        elif event.event_type == DELETE and event.old:
            self.data[event.collection] = [r for r in rows if r["id"] != event.old["id"]]

    def _schedule_reconcile(self) -> None:
        if self._reconcile_pending:
            return
        self._reconcile_pending = True
        task = asyncio.get_running_loop().create_task(self._reconcile())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reconcile(self) -> None:
        try:
            await asyncio.sleep(self.reconcile_delay)
        finally:
            self._reconcile_pending = False
        await self.load(False)

    async def settle(self) -> None:
        """Wait until no reconciliation is pending or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        for ch in self.channels:
            ch.close()
        self.channels = []
        for task in list(self._tasks):
            task.cancel()
        self._reconcile_pending = False

    # ---- local state patches ----

    def _merge(self, collection: str, row: Dict[str, Any]) -> None:
        rows = [r for r in self.data[collection] if r["id"] != row["id"]]
        rows.append(row)
        self.data[collection] = _by_order(rows)

    def _replace(self, collection: str, row: Dict[str, Any]) -> None:
        rows = self.data[collection]
        if not any(r["id"] == row["id"] for r in rows):
            return
        self.data[collection] = _by_order([row if r["id"] == row["id"] else r for r in rows])

    # ---- writes ----

    async def update(self, collection: str, row_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        label = LABELS.get(collection, "Row")
        original = self.find(collection, row_id)
        if original is None:
            logger.error("%s with id %s not found", label, row_id)
            self.notifier.error(f"{label} Update Failed", f"{label} with id {row_id} not found")
            return None

        merged = {**original, **patch}
        try:
            clean = validate_row(collection, merged)
        except ValidationError as exc:
            self.notifier.error(f"{label} Update Failed", describe_validation(exc))
            return None
        # validation may normalize fields outside the patch (is_current clears end_date)
        remote_patch = {k: v for k, v in clean.items() if k in patch or original.get(k) != v}

        self._replace(collection, {**original, **remote_patch})
        try:
            row = await self.store.update(collection, row_id, remote_patch)
        except Exception as exc:
            logger.exception("%s update failed", label)
            self.notifier.error(f"{label} Update Failed", str(exc) or "Failed to save changes")
            await self.load(False)
            return None

        self._replace(collection, row)
        self.notifier.success(f"{label} Updated", "Changes saved successfully.")
        return row

    async def create(self, collection: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        label = LABELS.get(collection, "Row")
        try:
            clean = validate_row(collection, data)
        except ValidationError as exc:
            self.notifier.error(f"Add {label} Failed", describe_validation(exc))
            return None
        try:
            row = await self.store.insert(collection, clean)
        except Exception as exc:
            logger.exception("%s insert failed", label)
            self.notifier.error(f"Add {label} Failed", str(exc) or f"Failed to add {label.lower()}")
            return None

        self._merge(collection, row)
        self.notifier.success(f"{label} Added", f"New {label.lower()} has been added successfully.")
        return row

    async def delete(self, collection: str, row_id: str) -> bool:
        label = LABELS.get(collection, "Row")
        snapshot = self.find(collection, row_id)
        if snapshot is None:
            self.notifier.error("Delete Failed", f"{label} with id {row_id} not found")
            return False

        self.data[collection] = [r for r in self.data[collection] if r["id"] != row_id]
        try:
            await self.store.delete(collection, row_id)
        except Exception as exc:
            logger.exception("%s delete failed", label)
            self._merge(collection, snapshot)
            self.notifier.error("Delete Failed", str(exc) or f"Failed to delete {label.lower()}")
            return False

        self.notifier.success(f"{label} Deleted", f"{label} has been removed successfully.")
        return True

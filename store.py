"""
Async facade over the database helpers.

The synchronizer and the resume generator are asyncio code; pymongo is
blocking, so each call runs on a small thread pool. Every failure surfaces as
StoreError with the collection name in the message.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

import database

logger = logging.getLogger(__name__)


class StoreError(Exception):
    def __init__(self, collection: str, message: str):
        super().__init__(f"{collection}: {message}")
        self.collection = collection


class NotFound(StoreError):
    pass


class ContentStore:
    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="store")

    async def _run(self, collection: str, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, partial(fn, *args, **kwargs))
        except (PyMongoError, database.DatabaseUnavailable) as exc:
            logger.error("Store call on %s failed: %s", collection, exc)
            raise StoreError(collection, str(exc)) from exc

    async def select(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        sort = None
        if order_by == "order_index" and not descending:
            sort = database.ORDERED
        elif order_by:
            sort = [(order_by, DESCENDING if descending else ASCENDING)]
        return await self._run(collection, database.get_documents, collection, filters, limit, sort)

    async def single(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return await self._run(collection, database.find_one, collection, filters)

    async def insert(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._run(collection, database.create_document, collection, data)

    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        row = await self._run(collection, database.update_document, collection, doc_id, patch)
        if row is None:
            raise NotFound(collection, f"no row with id {doc_id}")
        return row

    async def delete(self, collection: str, doc_id: str) -> None:
        deleted = await self._run(collection, database.delete_document, collection, doc_id)
        if not deleted:
            raise NotFound(collection, f"no row with id {doc_id}")

    async def upsert_single(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._run(collection, database.upsert_singleton, collection, data)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

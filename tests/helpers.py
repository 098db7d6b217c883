import asyncio

import database
from store import ContentStore, StoreError


class FlakyStore(ContentStore):
    """ContentStore that fails selected calls on demand and counts every call."""

    def __init__(self):
        super().__init__(max_workers=1)
        self.fail_select = set()
        self.fail_select_times = None  # None: fail forever
        self.fail_writes = False
        self.calls = []

    async def select(self, collection, *args, **kwargs):
        self.calls.append(("select", collection))
        if collection in self.fail_select:
            if self.fail_select_times is None or self.fail_select_times > 0:
                if self.fail_select_times is not None:
                    self.fail_select_times -= 1
                raise StoreError(collection, "connection reset")
        return await super().select(collection, *args, **kwargs)

    async def insert(self, collection, data):
        self.calls.append(("insert", collection))
        if self.fail_writes:
            raise StoreError(collection, "write refused")
        return await super().insert(collection, data)

    async def update(self, collection, doc_id, patch):
        self.calls.append(("update", collection))
        if self.fail_writes:
            raise StoreError(collection, "write refused")
        return await super().update(collection, doc_id, patch)

    async def delete(self, collection, doc_id):
        self.calls.append(("delete", collection))
        if self.fail_writes:
            raise StoreError(collection, "write refused")
        return await super().delete(collection, doc_id)

    def count(self, kind, collection=None):
        return sum(1 for k, c in self.calls if k == kind and (collection is None or c == collection))


async def drain(*syncs):
    """Let queued change events run, then wait for the reconciling loads."""
    await asyncio.sleep(0.05)
    for sync in syncs:
        await sync.settle()


def seed(collection, *rows):
    return [database.create_document(collection, row) for row in rows]

import asyncio
import os
import tempfile

os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="portfolio-media-"))
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "correct horse"

import mongomock
import pytest

import database
from helpers import FlakyStore
from notifications import Notifier
from realtime import ChangeHub
from store import ContentStore


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    db = mongomock.MongoClient().db
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture(autouse=True)
def hub(monkeypatch):
    changes = ChangeHub()
    monkeypatch.setattr(database, "changes", changes)
    return changes


@pytest.fixture
def store():
    s = ContentStore(max_workers=1)
    yield s
    s.close()


@pytest.fixture
def flaky_store():
    s = FlakyStore()
    yield s
    s.close()


@pytest.fixture
async def make_sync(hub):
    """Build synchronizers with zero delays; closes them at teardown."""
    made = []

    def make(cls, store, **kwargs):
        kwargs.setdefault("reconcile_delay", 0)
        kwargs.setdefault("retry_base_delay", 0)
        sync = cls(store, hub, Notifier(), **kwargs)
        made.append(sync)
        return sync

    yield make
    for sync in made:
        sync.close()
    await asyncio.sleep(0)

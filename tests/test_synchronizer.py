import asyncio

import database
from helpers import drain, seed
from realtime import ChangeEvent, INSERT, UPDATE
from schemas import CONTACT_FIELDS, EXPERIENCE, SECTIONS, SKILLS
from store import ContentStore
from synchronizer import Synchronizer
from views import HireView, HireViewEditor


def skill(name, order, **extra):
    row = {"name": name, "category": "Backend", "proficiency": 50, "color": "#112233",
           "order_index": order, "is_active": True}
    row.update(extra)
    return row


async def test_load_sorts_by_order_index_and_drops_stale_rows(store, make_sync):
    seed(SKILLS, skill("Go", 2), skill("Python", 0), skill("SQL", 1))
    editor = make_sync(HireViewEditor, store)

    assert await editor.load()
    assert [s["name"] for s in editor.skills] == ["Python", "SQL", "Go"]
    assert editor.last_synced is not None

    database.delete_document(SKILLS, editor.skills[0]["id"])
    assert await editor.load()
    assert [s["name"] for s in editor.skills] == ["SQL", "Go"]


async def test_equal_order_index_keeps_insertion_order(store, make_sync):
    seed(SKILLS, skill("First", 1), skill("Second", 1), skill("Zero", 0))
    editor = make_sync(HireViewEditor, store)
    await editor.load()
    assert [s["name"] for s in editor.skills] == ["Zero", "First", "Second"]


async def test_public_view_only_loads_active_rows(store, make_sync):
    seed(SKILLS, skill("Shown", 0), skill("Hidden", 1, is_active=False))
    public = make_sync(HireView, store)
    admin = make_sync(HireViewEditor, store)

    await public.load()
    await admin.load()
    assert [s["name"] for s in public.skills] == ["Shown"]
    assert [s["name"] for s in admin.skills] == ["Shown", "Hidden"]


async def test_failed_collection_leaves_every_collection_untouched(flaky_store, make_sync):
    seed(SKILLS, skill("Python", 0))
    seed(SECTIONS, {"section_type": "hero", "title": "Hi", "content": {}, "order_index": 0, "is_active": True})
    editor = make_sync(HireViewEditor, flaky_store)
    await editor.load()
    before = {name: list(rows) for name, rows in editor.data.items()}

    seed(SKILLS, skill("Rust", 1))
    flaky_store.fail_select = {EXPERIENCE}
    assert not await editor.load(show_feedback=True)

    assert editor.data == before
    assert len(editor.notifier.errors) == 1
    assert "hire_experience" in editor.notifier.errors[0].description
    assert editor.error


async def test_reads_retry_with_backoff_before_failing(flaky_store, make_sync):
    editor = make_sync(HireViewEditor, flaky_store)
    flaky_store.fail_select = {CONTACT_FIELDS}

    assert not await editor.load()
    # one attempt plus three retries
    assert flaky_store.count("select", CONTACT_FIELDS) == 4


async def test_backoff_delays_double_from_base(flaky_store, make_sync, monkeypatch):
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds):
        delays.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    editor = make_sync(HireViewEditor, flaky_store, retry_base_delay=1.0)
    flaky_store.fail_select = {SKILLS}

    assert not await editor.load()
    assert delays == [1.0, 2.0, 4.0]


async def test_transient_read_failure_recovers_quietly(flaky_store, make_sync):
    seed(SKILLS, skill("Python", 0))
    editor = make_sync(HireViewEditor, flaky_store)
    flaky_store.fail_select = {SKILLS}
    flaky_store.fail_select_times = 2

    assert await editor.load(show_feedback=True)
    assert [s["name"] for s in editor.skills] == ["Python"]
    assert editor.notifier.errors == []
    assert editor.notifier.history[-1].title == "Data Refreshed"


class StampingStore(ContentStore):
    """Returns rows carrying a field only the server knows about."""

    async def update(self, collection, doc_id, patch):
        row = await super().update(collection, doc_id, patch)
        return {**row, "revision": 7}


async def test_update_adopts_the_row_returned_by_the_store(make_sync):
    stamping = StampingStore(max_workers=1)
    try:
        (row,) = seed(SKILLS, skill("Python", 0))
        editor = make_sync(HireViewEditor, stamping)
        await editor.load()

        saved = await editor.update(SKILLS, row["id"], {"proficiency": 95})
        assert saved["revision"] == 7
        assert editor.find(SKILLS, row["id"])["revision"] == 7
        assert editor.find(SKILLS, row["id"])["proficiency"] == 95
    finally:
        stamping.close()


async def test_update_sends_fields_normalized_by_validation(store, make_sync):
    (row,) = seed(EXPERIENCE, {"company": "ACME", "position": "Dev", "start_date": "2020-01-01",
                               "end_date": "2022-01-01", "is_current": False,
                               "order_index": 0, "is_active": True})
    editor = make_sync(HireViewEditor, store)
    await editor.load()

    saved = await editor.update(EXPERIENCE, row["id"], {"is_current": True})

    assert saved["is_current"] is True and saved["end_date"] is None
    assert database.get_document(EXPERIENCE, row["id"])["end_date"] is None
    assert editor.find(EXPERIENCE, row["id"])["end_date"] is None


async def test_failed_update_converges_to_a_fresh_load(flaky_store, store, make_sync):
    (row,) = seed(SKILLS, skill("Python", 0))
    editor = make_sync(HireViewEditor, flaky_store)
    await editor.load()

    # someone else changes the row meanwhile
    database.update_document(SKILLS, row["id"], {"name": "Python 3"})
    flaky_store.fail_writes = True
    assert await editor.update(SKILLS, row["id"], {"proficiency": 10}) is None

    reference = make_sync(HireViewEditor, store)
    await reference.load()
    assert editor.data == reference.data
    assert editor.find(SKILLS, row["id"])["name"] == "Python 3"
    assert editor.notifier.errors[-1].title == "Skill Update Failed"


async def test_invalid_update_never_reaches_the_store(flaky_store, make_sync):
    (row,) = seed(SKILLS, skill("Python", 0))
    editor = make_sync(HireViewEditor, flaky_store)
    await editor.load()

    assert await editor.update(SKILLS, row["id"], {"proficiency": 150}) is None
    assert flaky_store.count("update") == 0
    assert editor.find(SKILLS, row["id"])["proficiency"] == 50
    assert "proficiency" in editor.notifier.errors[-1].description


async def test_create_appends_only_after_the_store_assigns_an_id(flaky_store, make_sync):
    editor = make_sync(HireViewEditor, flaky_store)
    await editor.load()

    flaky_store.fail_writes = True
    assert await editor.add_skill(name="Go") is None
    assert editor.skills == []

    flaky_store.fail_writes = False
    row = await editor.add_skill(name="Go")
    assert row["id"]
    assert [s["id"] for s in editor.skills] == [row["id"]]


async def test_failed_delete_restores_the_row_in_order(flaky_store, make_sync):
    rows = seed(SKILLS, skill("A", 0), skill("B", 1), skill("C", 2))
    editor = make_sync(HireViewEditor, flaky_store)
    await editor.load()

    flaky_store.fail_writes = True
    assert not await editor.delete(SKILLS, rows[1]["id"])
    assert [s["name"] for s in editor.skills] == ["A", "B", "C"]
    assert editor.notifier.errors[-1].title == "Delete Failed"


async def test_delete_removes_row_locally_and_remotely(store, make_sync):
    rows = seed(SKILLS, skill("A", 0), skill("B", 1))
    editor = make_sync(HireViewEditor, store)
    await editor.load()

    assert await editor.delete(SKILLS, rows[0]["id"])
    assert [s["name"] for s in editor.skills] == ["B"]
    assert database.get_document(SKILLS, rows[0]["id"]) is None


async def test_pushed_insert_appears_exactly_once(store, make_sync):
    editor = make_sync(HireViewEditor, store)
    await editor.load()
    editor.subscribe()

    row = await editor.add_skill(name="Kotlin")
    await drain(editor)

    assert [s["id"] for s in editor.skills].count(row["id"]) == 1

    # a duplicate delivery is merged by id as well
    editor.apply_change(ChangeEvent(INSERT, SKILLS, new=row))
    assert [s["id"] for s in editor.skills].count(row["id"]) == 1


async def test_external_changes_reach_a_subscribed_view(store, make_sync):
    seed(SKILLS, skill("B", 1))
    public = make_sync(HireView, store)
    await public.load()
    public.subscribe()

    (added,) = seed(SKILLS, skill("A", 0))
    await drain(public)
    assert [s["name"] for s in public.skills] == ["A", "B"]

    database.update_document(SKILLS, added["id"], {"is_active": False})
    await drain(public)
    assert [s["name"] for s in public.skills] == ["B"]


async def test_update_event_is_applied_before_reconciliation(store, make_sync):
    (row,) = seed(SKILLS, skill("A", 0))
    editor = make_sync(HireViewEditor, store)
    await editor.load()

    editor.apply_change(ChangeEvent(UPDATE, SKILLS, new={**row, "proficiency": 77}))
    assert editor.find(SKILLS, row["id"])["proficiency"] == 77


async def test_last_writer_wins_and_both_sessions_converge(store, make_sync):
    (row,) = seed(SKILLS, skill("Python", 0, proficiency=50))
    a = make_sync(HireViewEditor, store)
    b = make_sync(HireViewEditor, store)
    for sync in (a, b):
        await sync.load()
        sync.subscribe()

    await a.update(SKILLS, row["id"], {"proficiency": 80})
    await b.update(SKILLS, row["id"], {"proficiency": 60})
    await drain(a, b)

    assert database.get_document(SKILLS, row["id"])["proficiency"] == 60
    assert a.find(SKILLS, row["id"])["proficiency"] == 60
    assert b.find(SKILLS, row["id"])["proficiency"] == 60
    assert a.notifier.errors == [] and b.notifier.errors == []


async def test_subscriptions_use_session_scoped_channel_names(store, hub, make_sync):
    a = make_sync(HireViewEditor, store)
    b = make_sync(HireViewEditor, store)
    a.subscribe()
    b.subscribe()

    names = [ch.name for ch in hub.channels()]
    assert len(names) == 8 == len(set(names))
    assert all(name.startswith("admin_") for name in names)

    a.close()
    assert len(hub.channels()) == 4
    assert all(ch.name.startswith(b.session_id) for ch in hub.channels())


async def test_resubscribe_replaces_previous_channels(store, hub, make_sync):
    sync = make_sync(Synchronizer, store, collections=(SKILLS,))
    sync.subscribe()
    first = sync.session_id
    sync.subscribe()
    assert [ch.name for ch in hub.channels()] == [f"{sync.session_id}_{SKILLS}"]
    assert sync.session_id != first

"""Unit tests for the in-memory document store"""
import pytest

from habitquest.db.store import Filter
from habitquest.exceptions import ConflictError, RecordNotFoundError, ValidationError


@pytest.mark.asyncio
async def test_create_get_update_delete(store):
    created = await store.create("habits", {"name": "Run", "user_id": "alice"}, doc_id="h1")
    assert created.id == "h1"

    doc = await store.get("habits", "h1")
    assert doc.data == {"name": "Run", "user_id": "alice"}

    updated = await store.update("habits", "h1", {"name": "Sprint"})
    assert updated.data["name"] == "Sprint"
    assert updated.data["user_id"] == "alice"

    assert await store.delete("habits", "h1") is True
    assert await store.get("habits", "h1") is None
    assert await store.delete("habits", "h1") is False


@pytest.mark.asyncio
async def test_create_generates_id_and_rejects_duplicates(store):
    doc = await store.create("habits", {"name": "Run"})
    assert doc.id

    with pytest.raises(ConflictError):
        await store.create("habits", {"name": "Again"}, doc_id=doc.id)


@pytest.mark.asyncio
async def test_returned_documents_are_copies(store):
    await store.create("users", {"tags": ["a"]}, doc_id="u1")

    doc = await store.get("users", "u1")
    doc.data["tags"].append("b")

    assert (await store.get("users", "u1")).data["tags"] == ["a"]


@pytest.mark.asyncio
async def test_update_missing_document(store):
    with pytest.raises(RecordNotFoundError):
        await store.update("users", "ghost", {"display_name": "x"})


@pytest.mark.asyncio
async def test_compare_and_set(store):
    await store.create("challenges", {"status": "pending"}, doc_id="c1")

    await store.update("challenges", "c1", {"status": "active"}, expected={"status": "pending"})
    with pytest.raises(ConflictError):
        await store.update("challenges", "c1", {"status": "active"}, expected={"status": "pending"})

    assert (await store.get("challenges", "c1")).data["status"] == "active"


@pytest.mark.asyncio
async def test_increment(store):
    await store.create("users", {"total_xp": 100, "name": "x"}, doc_id="u1")

    doc = await store.increment("users", "u1", "total_xp", -40)
    assert doc.data["total_xp"] == 60

    doc = await store.increment("users", "u1", "bonus", 5)
    assert doc.data["bonus"] == 5

    with pytest.raises(ValidationError):
        await store.increment("users", "u1", "name", 1)
    with pytest.raises(RecordNotFoundError):
        await store.increment("users", "ghost", "total_xp", 1)


@pytest.mark.asyncio
async def test_increment_with_minimum(store):
    await store.create("users", {"total_xp": 100}, doc_id="u1")

    doc = await store.increment("users", "u1", "total_xp", -100, minimum=0)
    assert doc.data["total_xp"] == 0

    with pytest.raises(ConflictError):
        await store.increment("users", "u1", "total_xp", -1, minimum=0)
    assert (await store.get("users", "u1")).data["total_xp"] == 0


@pytest.mark.asyncio
async def test_query_filters_order_and_pagination(store):
    for doc_id, xp, team in [("a", 10, "red"), ("b", 30, "blue"), ("c", 20, "red"), ("d", None, "red")]:
        await store.create("users", {"total_xp": xp, "team": team}, doc_id=doc_id)

    red = await store.query("users", filters=[Filter("team", "==", "red")], order_by="total_xp")
    assert [d.id for d in red] == ["a", "c", "d"]

    top = await store.query("users", order_by="total_xp", descending=True, limit=2)
    assert [d.id for d in top] == ["d", "b"]

    page = await store.query("users", order_by="total_xp", limit=1, offset=1)
    assert [d.id for d in page] == ["c"]

    either = await store.query("users", filters=[Filter("team", "in", ["blue"])])
    assert [d.id for d in either] == ["b"]

    rich = await store.query("users", filters=[Filter("total_xp", ">=", 20)])
    assert [d.id for d in rich] == ["b", "c"]


def test_filter_rejects_unknown_operator():
    with pytest.raises(ValueError):
        Filter("total_xp", "~=", 1)


def test_filter_missing_field_never_matches():
    assert Filter("team", "!=", "red").matches({}) is False


@pytest.mark.asyncio
async def test_document_subscription(store):
    snapshots = []
    await store.create("users", {"total_xp": 0}, doc_id="u1")

    handle = await store.subscribe_document("users", "u1", snapshots.append)
    await store.increment("users", "u1", "total_xp", 10)
    await store.create("users", {"total_xp": 0}, doc_id="u2")
    await store.delete("users", "u1")

    assert [s.data["total_xp"] if s else None for s in snapshots] == [0, 10, None]

    handle.cancel()
    await store.create("users", {"total_xp": 5}, doc_id="u1")
    assert len(snapshots) == 3


@pytest.mark.asyncio
async def test_query_subscription(store):
    snapshots = []

    async def on_change(docs):
        snapshots.append([d.id for d in docs])

    with await store.subscribe_query("habits", on_change, filters=[Filter("user_id", "==", "alice")]):
        await store.create("habits", {"user_id": "alice"}, doc_id="h1")
        await store.create("habits", {"user_id": "bob"}, doc_id="h2")

    await store.create("habits", {"user_id": "alice"}, doc_id="h3")

    assert snapshots == [[], ["h1"], ["h1"]]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_writes(store):
    def broken(_):
        raise RuntimeError("subscriber bug")

    await store.subscribe_query("habits", broken)

    doc = await store.create("habits", {"user_id": "alice"}, doc_id="h1")
    assert doc.id == "h1"


@pytest.mark.asyncio
async def test_close_cancels_subscriptions(store):
    handle = await store.subscribe_query("habits", lambda docs: None)

    await store.close()

    assert handle.active is False

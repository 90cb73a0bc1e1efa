import pytest
import pytest_asyncio

from db_query.database import (
    ColumnInfo,
    InMemorySchemaStore,
    SchemaSnapshot,
    SQLiteSchemaStore,
    TableInfo,
    ViewInfo,
)


@pytest_asyncio.fixture
async def store(tmp_path):
    store = SQLiteSchemaStore(str(tmp_path / "cache" / "db_query.db"))
    yield store
    await store.close()


@pytest.fixture
def snapshot():
    return SchemaSnapshot(
        db_name="main",
        tables=[
            TableInfo(
                name="users",
                columns=[
                    ColumnInfo(name="id", data_type="INTEGER", nullable=False),
                    ColumnInfo(name="email", data_type="TEXT", default_value="'n/a'"),
                ],
                primary_key=["id"],
                row_count=3,
            ),
            TableInfo(name="logs", columns=[ColumnInfo(name="line", data_type="TEXT")]),
        ],
        views=[ViewInfo(name="emails", columns=[ColumnInfo(name="email", data_type="TEXT")])],
    )


async def test_sqlite_store_round_trip(store, snapshot):
    await store.save("main", snapshot)

    loaded = await store.get("main")

    assert loaded == snapshot


async def test_unknown_name_is_a_miss(store):
    assert await store.get("missing") is None


async def test_empty_snapshot_is_a_hit(store):
    await store.save("empty", SchemaSnapshot(db_name="empty"))

    loaded = await store.get("empty")

    assert loaded is not None
    assert loaded.tables == []
    assert loaded.views == []


async def test_save_replaces_previous_snapshot(store, snapshot):
    await store.save("main", snapshot)
    await store.save("main", SchemaSnapshot(db_name="main", tables=[snapshot.tables[1]]))

    loaded = await store.get("main")

    assert loaded.table_names == ["logs"]
    assert loaded.views == []


async def test_delete(store, snapshot):
    await store.save("main", snapshot)
    await store.save("other", snapshot)

    await store.delete("main")

    assert await store.get("main") is None
    assert await store.get("other") is not None


async def test_persists_across_instances(tmp_path, snapshot):
    path = str(tmp_path / "shared.db")
    first = SQLiteSchemaStore(path)
    await first.save("main", snapshot)
    await first.close()

    second = SQLiteSchemaStore(path)
    try:
        assert (await second.get("main")).table_names == ["users", "logs"]
    finally:
        await second.close()


async def test_in_memory_store(snapshot):
    store = InMemorySchemaStore()

    await store.save("main", snapshot)
    assert await store.get("main") is snapshot

    await store.delete("main")
    assert await store.get("main") is None

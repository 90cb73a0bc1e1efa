import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from db_query.database import InMemorySchemaStore, SchemaIntrospector, TableInfo, ColumnInfo
from db_query.database import schema_introspector


class CountingIntrospector(SchemaIntrospector):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.introspections = 0

    async def introspect(self, name, engine):
        self.introspections += 1
        return await super().introspect(name, engine)


@pytest.fixture
def introspector():
    return CountingIntrospector(InMemorySchemaStore())


async def test_discovers_tables_and_views(introspector, users_engine):
    snapshot = await introspector.fetch("main", users_engine)

    assert snapshot.db_name == "main"
    assert snapshot.table_names == ["orders", "users"]
    assert snapshot.view_names == ["user_names"]
    assert snapshot.updated_at.tzinfo is not None


async def test_columns_in_declaration_order(introspector, users_engine):
    snapshot = await introspector.fetch("main", users_engine)
    users = snapshot.get_table("users")

    assert users.column_names == ["id", "name", "email"]
    assert users.get_column("id").data_type == "INTEGER"
    assert users.get_column("id").nullable is False
    assert users.get_column("name").nullable is False
    assert users.get_column("email").nullable is True
    assert users.get_column("email").default_value == "'n/a'"
    assert users.get_column("name").default_value is None


async def test_primary_keys(introspector, users_engine):
    snapshot = await introspector.fetch("main", users_engine)

    assert snapshot.get_table("users").primary_key == ["id"]
    assert snapshot.get_table("orders").primary_key == ["order_id", "user_id"]


async def test_row_counts(introspector, users_engine):
    snapshot = await introspector.fetch("main", users_engine)

    assert snapshot.get_table("users").row_count == 3
    assert snapshot.get_table("orders").row_count == 0


async def test_row_counts_can_be_disabled(users_engine):
    introspector = SchemaIntrospector(InMemorySchemaStore(), include_row_counts=False)

    snapshot = await introspector.fetch("main", users_engine)

    assert snapshot.get_table("users").row_count is None


async def test_view_columns(introspector, users_engine):
    snapshot = await introspector.fetch("main", users_engine)

    assert snapshot.views[0].column_names == ["name"]


async def test_empty_database(introspector, pool_cache, empty_db):
    engine = await pool_cache.acquire("empty", empty_db)

    snapshot = await introspector.fetch("empty", engine)

    assert snapshot.tables == []
    assert snapshot.views == []
    # Empty snapshots are still cached
    await introspector.fetch("empty", engine)
    assert introspector.introspections == 1


async def test_cache_hit_and_forced_refresh(introspector, users_engine):
    first = await introspector.fetch("main", users_engine)
    second = await introspector.fetch("main", users_engine)

    assert second is first
    assert introspector.introspections == 1

    refreshed = await introspector.fetch("main", users_engine, force_refresh=True)

    assert refreshed is not first
    assert introspector.introspections == 2
    assert await introspector.fetch("main", users_engine) is refreshed


async def test_invalidate(introspector, users_engine):
    await introspector.fetch("main", users_engine)
    await introspector.invalidate("main")
    await introspector.fetch("main", users_engine)

    assert introspector.introspections == 2


async def test_invalidate_waits_for_in_flight_fetch(introspector, users_engine, monkeypatch):
    started = asyncio.Event()
    release = asyncio.Event()
    introspect = introspector.introspect

    async def gated_introspect(name, engine):
        started.set()
        await release.wait()
        return await introspect(name, engine)

    monkeypatch.setattr(introspector, "introspect", gated_introspect)

    fetching = asyncio.create_task(introspector.fetch("main", users_engine))
    await started.wait()
    invalidating = asyncio.create_task(introspector.invalidate("main"))
    await asyncio.sleep(0)
    assert not invalidating.done()

    release.set()
    await fetching
    await invalidating

    assert await introspector.store.get("main") is None
    assert len(introspector._locks) == 0


async def test_concurrent_fetch_introspects_once(introspector, users_engine):
    snapshots = await asyncio.gather(
        *(introspector.fetch("main", users_engine) for _ in range(10))
    )

    assert introspector.introspections == 1
    assert all(s is snapshots[0] for s in snapshots)


async def test_row_count_failure_is_best_effort(introspector, users_engine, monkeypatch):
    original = schema_introspector._fetch_dicts

    async def failing_counts(conn, query, params=None):
        if "COUNT(*)" in query:
            raise OperationalError(query, params, Exception("database is locked"))
        return await original(conn, query, params)

    monkeypatch.setattr(schema_introspector, "_fetch_dicts", failing_counts)

    snapshot = await introspector.fetch("main", users_engine)

    assert snapshot.table_names == ["orders", "users"]
    assert all(table.row_count is None for table in snapshot.tables)


def test_primary_key_limited_to_known_columns():
    table = TableInfo(
        name="t",
        columns=[ColumnInfo(name="id", data_type="INTEGER")],
        primary_key=["id", "ghost"],
    )

    assert table.primary_key == ["id"]
    assert TableInfo(name="t", primary_key=["ghost"]).primary_key is None


def test_snapshot_dict_shape():
    table = TableInfo(
        name="users",
        columns=[ColumnInfo(name="id", data_type="INTEGER", nullable=False)],
        primary_key=["id"],
        row_count=3,
    )

    assert table.to_dict() == {
        "name": "users",
        "columns": [{"name": "id", "dataType": "INTEGER", "nullable": False}],
        "primaryKey": ["id"],
        "rowCount": 3,
    }
    assert TableInfo.from_dict(table.to_dict()) == table

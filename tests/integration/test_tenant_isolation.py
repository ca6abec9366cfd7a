import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import insert, select, text
from sqlalchemy.ext.asyncio import create_async_engine

from storefront_core.database.health import DatabaseHealthCheck
from storefront_core.database.namespaces import derive_namespace
from storefront_core.database.sessions import TenantDatabase
from storefront_core.database.tenant_tables import products
from storefront_core.exceptions import TenantNotFoundError


@pytest.fixture
async def tenant_db(database_url):
    url = database_url
    # a tiny pool forces connections to be reused across tenants
    engine = create_async_engine(url, pool_size=2, max_overflow=0)
    yield TenantDatabase(engine)
    await engine.dispose()


@pytest.fixture
async def two_tenants(tenant_db):
    a, b = uuid4(), uuid4()
    for tid in (a, b):
        assert await tenant_db.provision_namespace(tid)
    yield a, b
    for tid in (a, b):
        await tenant_db.drop_namespace(tid)


async def _add_product(db, tenant_id, handle):
    async with db.tenant_connection(tenant_id) as conn:
        await conn.execute(insert(products).values(title={"en": handle}, handle=handle))


async def test_provision_is_idempotent(tenant_db, two_tenants):
    a, _ = two_tenants
    assert await tenant_db.namespace_exists(a)
    assert not await tenant_db.provision_namespace(a)
    assert a in await tenant_db.list_namespaces()

    health = await DatabaseHealthCheck(tenant_db.engine).check_namespace(a)
    assert health == {"healthy": True, "namespace": derive_namespace(a), "tables": 2}


async def test_concurrent_connections_never_cross(tenant_db, two_tenants):
    a, b = two_tenants
    await _add_product(tenant_db, a, "only-in-a")
    await _add_product(tenant_db, b, "only-in-b")

    async def observe(tid):
        async with tenant_db.tenant_connection(tid) as conn:
            schema = (await conn.execute(text("SELECT current_schema()"))).scalar_one()
            handles = (await conn.execute(select(products.c.handle))).scalars().all()
            await asyncio.sleep(0.01)
            return tid, schema, handles

    results = await asyncio.gather(*(observe(a if i % 2 else b) for i in range(40)))
    for tid, schema, handles in results:
        assert schema == derive_namespace(tid)
        assert handles == (["only-in-a"] if tid == a else ["only-in-b"])


async def test_search_path_does_not_leak_back_to_the_pool(tenant_db, two_tenants):
    a, _ = two_tenants
    async with tenant_db.tenant_connection(a):
        pass
    async with tenant_db.engine.connect() as conn:
        assert (await conn.execute(text("SELECT current_schema()"))).scalar_one() == "public"


async def test_failed_work_rolls_back(tenant_db, two_tenants):
    a, _ = two_tenants
    with pytest.raises(RuntimeError):
        async with tenant_db.tenant_connection(a) as conn:
            await conn.execute(insert(products).values(title={"en": "x"}, handle="rolled-back"))
            raise RuntimeError("abort")

    async def count(conn):
        return (await conn.execute(select(products.c.id))).all()

    assert await tenant_db.run_in_tenant(a, count) == []


async def test_tenant_session_orm_access(tenant_db, two_tenants):
    a, _ = two_tenants
    async with tenant_db.tenant_session(a) as session:
        await session.execute(insert(products).values(title={"en": "s"}, handle="via-session"))
    async with tenant_db.tenant_session(a) as session:
        handles = (await session.execute(select(products.c.handle))).scalars().all()
    assert handles == ["via-session"]


async def test_unknown_tenant_namespace_is_not_found(tenant_db):
    async def count(conn):
        return (await conn.execute(select(products.c.id))).all()

    with pytest.raises(TenantNotFoundError):
        await tenant_db.run_in_tenant(uuid4(), count)

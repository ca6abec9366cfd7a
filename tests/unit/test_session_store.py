from storefront_core.sessions import SessionStore


async def test_session_roundtrip(cache, store):
    sessions = SessionStore(cache)
    await sessions.set_session("s1", {"user_id": "u1", "tenant_id": "t1"})
    assert await sessions.get_session("s1") == {"user_id": "u1", "tenant_id": "t1"}
    assert 0 < await store.ttl("session:s1") <= 86_400

    assert await sessions.delete_session("s1")
    assert await sessions.get_session("s1") is None


async def test_refresh_token_lifecycle(cache, store):
    sessions = SessionStore(cache)
    await sessions.store_refresh_token("u1", "rt-abc")
    assert await sessions.get_refresh_token("u1") == "rt-abc"
    assert 86_400 < await store.ttl("refresh_token:u1") <= 604_800

    assert await sessions.revoke_refresh_token("u1")
    assert await sessions.get_refresh_token("u1") is None


async def test_code_is_single_use(cache):
    sessions = SessionStore(cache)
    await sessions.store_code("verify_email", "u1", "123456")

    assert not await sessions.consume_code("verify_email", "u1", "000000")
    assert await sessions.consume_code("verify_email", "u1", "123456")
    assert not await sessions.consume_code("verify_email", "u1", "123456")

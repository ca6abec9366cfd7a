from uuid import UUID, uuid4

import pytest

from storefront_core.database.namespaces import (
    NAMESPACE_PREFIX,
    derive_namespace,
    is_tenant_namespace,
    parse_namespace,
    quote_namespace,
    tenant_cache_prefix,
)
from storefront_core.exceptions import ValidationError


def test_namespace_is_deterministic_and_injective():
    ids = [uuid4() for _ in range(10_000)]
    names = [derive_namespace(i) for i in ids]
    assert len(set(names)) == len(ids)
    assert all(derive_namespace(i) == n for i, n in zip(ids, names))


def test_namespace_shape():
    tid = UUID("7b3c1a52-0d4e-4f6a-9c1b-2e8f0a6d5c41")
    name = derive_namespace(tid)
    assert name == "tenant_7b3c1a520d4e4f6a9c1b2e8f0a6d5c41"
    assert name.startswith(NAMESPACE_PREFIX)
    assert len(name) <= 63
    assert derive_namespace(str(tid)) == name
    assert derive_namespace(str(tid).upper()) == name


def test_parse_is_inverse():
    tid = uuid4()
    assert parse_namespace(derive_namespace(tid)) == tid
    assert is_tenant_namespace(derive_namespace(tid))
    assert not is_tenant_namespace("public")


@pytest.mark.parametrize("bad", ["", "acme", "1234", None, 42])
def test_invalid_tenant_id_rejected(bad):
    with pytest.raises(ValidationError) as exc:
        derive_namespace(bad)
    assert exc.value.code == "invalid_tenant_id"


def test_parse_rejects_foreign_schema():
    with pytest.raises(ValidationError):
        parse_namespace("public")
    with pytest.raises(ValidationError):
        parse_namespace("tenant_nothex")


def test_cache_prefix_same_family():
    tid = uuid4()
    assert tenant_cache_prefix(tid) == f"t:{tid.hex}:"


def test_quote_only_derived_names():
    tid = uuid4()
    assert quote_namespace(derive_namespace(tid)) == f'"{derive_namespace(tid)}"'
    with pytest.raises(ValidationError):
        quote_namespace('public"; DROP SCHEMA x; --')

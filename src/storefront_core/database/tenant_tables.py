"""
Fixed table set provisioned inside every tenant namespace.

Tables are declared against the placeholder schema ``TENANT_SCHEMA``; the
gateway maps it to the real ``tenant_<hex>`` schema with SQLAlchemy's
``schema_translate_map`` at execution time. Tenant tables carry no
``tenant_id`` column: isolation comes from the schema, not from a filter.
"""
from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID as PG_UUID

TENANT_SCHEMA = "tenant"

tenant_metadata = MetaData(schema=TENANT_SCHEMA)

products = Table(
    "products",
    tenant_metadata,
    Column("id", PG_UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column("title", JSONB, nullable=False),
    Column("handle", String(255), nullable=False, unique=True),
    Column("description", JSONB, nullable=True),
    Column("vendor", String(255), nullable=True),
    Column("product_type", String(255), nullable=True),
    Column("tags", ARRAY(Text), nullable=True),
    Column("status", String(50), nullable=False, server_default="draft"),
    Column("published_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

product_variants = Table(
    "product_variants",
    tenant_metadata,
    Column("id", PG_UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()")),
    Column(
        "product_id",
        PG_UUID(as_uuid=True),
        ForeignKey(f"{TENANT_SCHEMA}.products.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("title", String(255), nullable=True),
    Column("sku", String(255), nullable=True, unique=True),
    Column("barcode", String(255), nullable=True),
    Column("price", Numeric(10, 2), nullable=False),
    Column("compare_at_price", Numeric(10, 2), nullable=True),
    Column("cost", Numeric(10, 2), nullable=True),
    Column("taxable", Boolean, nullable=False, server_default=text("true")),
    Column("weight", Numeric(10, 3), nullable=True),
    Column("weight_unit", String(10), nullable=False, server_default="kg"),
    Column("inventory_quantity", Integer, nullable=False, server_default=text("0")),
    Column("track_inventory", Boolean, nullable=False, server_default=text("true")),
    Column("requires_shipping", Boolean, nullable=False, server_default=text("true")),
    Column("options", JSONB, nullable=False, server_default=text("'[]'::jsonb")),
    Column("position", Integer, nullable=False, server_default=text("0")),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

# index names are schema-local in PostgreSQL, so fixed names are safe per namespace
Index("idx_products_handle", products.c.handle)
Index("idx_products_status", products.c.status)
Index("idx_variants_sku", product_variants.c.sku)
Index("idx_variants_product_id", product_variants.c.product_id)

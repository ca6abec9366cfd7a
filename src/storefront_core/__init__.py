"""Multi-tenant storefront core: tenant directory, schema-per-tenant store gateway, tagged cache and coordination."""

__version__ = "0.1.0"

# Central mapping of error codes to HTTP status and default message.
# Keep keys stable: storefront clients and collaborators rely on these.
ERROR_CODES = {
    # ─── Validation ────────────────────────────────────────────────────────
    "validation_error": {
        "http": 422,
        "message": "Validation failed for one or more fields."
    },
    "invalid_slug": {
        "http": 422,
        "message": "Tenant slug must be 3-63 characters of a-z, 0-9 and '-'."
    },
    "invalid_tenant_id": {
        "http": 422,
        "message": "Tenant id must be a UUID."
    },
    "invalid_namespace": {
        "http": 422,
        "message": "Not a tenant namespace."
    },
    "invalid_settings": {
        "http": 422,
        "message": "Tenant settings are malformed."
    },

    # ─── Resources ─────────────────────────────────────────────────────────
    "not_found": {
        "http": 404,
        "message": "Resource not found."
    },
    "tenant_not_found": {
        "http": 404,
        "message": "No storefront is registered for this host."
    },
    "plan_not_found": {
        "http": 404,
        "message": "Subscription plan not found."
    },
    "conflict": {
        "http": 409,
        "message": "Resource already exists."
    },
    "slug_taken": {
        "http": 409,
        "message": "Tenant slug is already taken."
    },
    "lock_not_acquired": {
        "http": 409,
        "message": "Resource is busy. Please retry."
    },

    # ─── Tenant state ──────────────────────────────────────────────────────
    "tenant_suspended": {
        "http": 403,
        "message": "This storefront is currently unavailable."
    },
    "plan_limit_exceeded": {
        "http": 403,
        "message": "Plan limit reached for this resource."
    },

    # ─── Throttling ────────────────────────────────────────────────────────
    "rate_limited": {
        "http": 429,
        "message": "Too many requests. Please try again later."
    },

    # ─── Degraded / Internal ───────────────────────────────────────────────
    "store_unavailable": {
        "http": 503,
        "message": "A backing service is temporarily unavailable."
    },
    "internal_error": {
        "http": 500,
        "message": "An unexpected error occurred. Please try again later."
    },
}

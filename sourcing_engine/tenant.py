from flask import g, has_request_context, request, session


DEFAULT_TENANT_ID = "tenant-demo"
TENANT_HEADER = "X-Tenant-Id"


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def resolve_request_tenant() -> str:
    """Session tenant first, then the tenant header, then the demo tenant."""
    return (
        normalize_tenant_id(session.get("tenant_id"))
        or normalize_tenant_id(request.headers.get(TENANT_HEADER))
        or DEFAULT_TENANT_ID
    )


def current_tenant_id() -> str | None:
    if not has_request_context():
        return None
    return normalize_tenant_id(getattr(g, "tenant_id", None))


def scoped_tenant_id(value: str | None = None) -> str:
    return normalize_tenant_id(value) or current_tenant_id() or DEFAULT_TENANT_ID

from __future__ import annotations


class TenantPredicateError(RuntimeError):
    # Surface tenant-scoped queries issued without a tenant id.
    pass


def require_tenant_id(tenant_id: str | None) -> str:
    # Tenant-scoped reads and bulk writes must never run unscoped.
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")
    return tenant_id


def tenant_filters(tenant_id: str | None, **filters: object) -> dict[str, object]:
    # Build repository filters through one helper so every scoped query carries tenant_id.
    return {"tenant_id": require_tenant_id(tenant_id), **filters}

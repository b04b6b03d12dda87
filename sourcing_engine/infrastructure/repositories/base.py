from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from sourcing_engine.errors import TransactionAbortError


class TenantScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without tenant scope."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BaseRepository:
    def __init__(self, *, tenant_id: str | None = None) -> None:
        scope = str(tenant_id or "").strip()
        if not scope:
            raise TenantScopeRequiredError("tenant_id is required for repository access")
        self.tenant_id = scope

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def require_versioned_write(cursor, entity: str, entity_id: str) -> None:
        """A guarded UPDATE that touched nothing means another writer got there first."""
        if int(getattr(cursor, "rowcount", 0) or 0) < 1:
            raise TransactionAbortError(details=f"{entity} {entity_id} changed since it was read")

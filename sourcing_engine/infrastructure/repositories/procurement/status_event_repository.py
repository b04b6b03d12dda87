from __future__ import annotations

from sourcing_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


class StatusEventRepository(BaseRepository):
    def insert(
        self,
        db,
        *,
        entity: str,
        entity_id: str,
        from_status: str | None,
        to_status: str,
        reason: str | None,
    ) -> None:
        db.execute(
            """
            INSERT INTO status_events (entity, entity_id, from_status, to_status, reason, tenant_id, occurred_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (entity, entity_id, from_status, to_status, reason, self.tenant_id, utc_now_iso()),
        )

    def list_for_entity(self, db, entity: str, entity_id: str) -> list[dict]:
        rows = db.execute(
            """
            SELECT entity, entity_id, from_status, to_status, reason, occurred_at
            FROM status_events
            WHERE entity = ? AND entity_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (entity, entity_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

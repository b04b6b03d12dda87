from __future__ import annotations

from sourcing_engine.infrastructure.repositories.base import BaseRepository
from sourcing_engine.procurement.numbering import CounterState


class CounterRepository(BaseRepository):
    def get(self, db, domain: str) -> CounterState:
        row = db.execute(
            """
            SELECT value, version
            FROM sequence_counters
            WHERE counter_key = ? AND tenant_id = ?
            """,
            (domain, self.tenant_id),
        ).fetchone()
        if not row:
            return CounterState(domain=domain)
        return CounterState(domain=domain, value=int(row["value"]), version=int(row["version"]))

    def save(self, db, state: CounterState) -> None:
        if not state.exists:
            # A concurrent first insert trips the primary key and is retried as a conflict.
            db.execute(
                """
                INSERT INTO sequence_counters (tenant_id, counter_key, value, version)
                VALUES (?, ?, ?, 1)
                """,
                (self.tenant_id, state.domain, int(state.value)),
            )
            return
        cursor = db.execute(
            """
            UPDATE sequence_counters
            SET value = ?, version = version + 1
            WHERE counter_key = ? AND tenant_id = ? AND version = ?
            """,
            (int(state.value), state.domain, self.tenant_id, int(state.version)),
        )
        self.require_versioned_write(cursor, "counter", state.domain)

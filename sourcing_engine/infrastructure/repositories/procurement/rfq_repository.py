from __future__ import annotations

from sourcing_engine.domain.models import RFQ, RfqItem, RfqStatus
from sourcing_engine.infrastructure.repositories.base import BaseRepository


class RfqRepository(BaseRepository):
    def get(self, db, rfq_id: str) -> RFQ | None:
        row = db.execute(
            """
            SELECT id, number, category_id, status, valid_until, notes, created_at, version
            FROM rfqs
            WHERE id = ? AND tenant_id = ?
            """,
            (rfq_id, self.tenant_id),
        ).fetchone()
        if not row:
            return None
        header = dict(row)
        item_rows = db.execute(
            """
            SELECT material_id, description, quantity, uom, requisition_id, line_no
            FROM rfq_items
            WHERE rfq_id = ? AND tenant_id = ?
            ORDER BY position
            """,
            (rfq_id, self.tenant_id),
        ).fetchall()
        items = tuple(
            RfqItem(
                material_id=item["material_id"],
                quantity=float(item["quantity"]),
                uom=item["uom"] or "EA",
                description=item["description"] or "",
                requisition_id=item["requisition_id"],
                line_no=int(item["line_no"]) if item["line_no"] is not None else None,
            )
            for item in item_rows
        )
        return RFQ(
            id=header["id"],
            number=header["number"],
            category_id=header.get("category_id"),
            status=RfqStatus(header["status"]),
            items=items,
            valid_until=header.get("valid_until"),
            notes=header.get("notes"),
            created_at=header.get("created_at"),
            version=int(header["version"]),
        )

    def insert(self, db, rfq: RFQ) -> None:
        db.execute(
            """
            INSERT INTO rfqs (id, tenant_id, number, category_id, status, valid_until, notes, created_at, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                rfq.id,
                self.tenant_id,
                rfq.number,
                rfq.category_id,
                rfq.status.value,
                rfq.valid_until,
                rfq.notes,
                rfq.created_at,
            ),
        )
        self._insert_items(db, rfq)

    def update(self, db, rfq: RFQ) -> None:
        cursor = db.execute(
            """
            UPDATE rfqs
            SET status = ?, valid_until = ?, notes = ?, version = version + 1
            WHERE id = ? AND tenant_id = ? AND version = ?
            """,
            (rfq.status.value, rfq.valid_until, rfq.notes, rfq.id, self.tenant_id, rfq.version),
        )
        self.require_versioned_write(cursor, "rfq", rfq.id)
        db.execute("DELETE FROM rfq_items WHERE rfq_id = ? AND tenant_id = ?", (rfq.id, self.tenant_id))
        self._insert_items(db, rfq)

    def _insert_items(self, db, rfq: RFQ) -> None:
        for position, item in enumerate(rfq.items, start=1):
            db.execute(
                """
                INSERT INTO rfq_items (
                    tenant_id, rfq_id, position, material_id, description, quantity, uom, requisition_id, line_no
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self.tenant_id,
                    rfq.id,
                    position,
                    item.material_id,
                    item.description,
                    item.quantity,
                    item.uom,
                    item.requisition_id,
                    item.line_no,
                ),
            )

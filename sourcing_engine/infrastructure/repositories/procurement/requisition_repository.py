from __future__ import annotations

from typing import Iterable, List

from sourcing_engine.domain.models import (
    OrderLink,
    Requisition,
    RequisitionLine,
    RequisitionStatus,
    ReviewStatus,
    SourcingMethod,
)
from sourcing_engine.infrastructure.repositories.base import BaseRepository


_LINE_COLUMNS = (
    "line_no",
    "material_id",
    "description",
    "quantity",
    "requested_quantity",
    "uom",
    "review_status",
    "assigned_vendor_id",
    "assigned_vendor_name",
    "agreed_price",
    "discount_percent",
    "currency",
    "lead_time_days",
    "sourcing_method",
    "sourcing_ref",
    "quote_id",
    "po_id",
    "po_number",
)


def _line_from_row(row: dict) -> RequisitionLine:
    link = None
    if row.get("po_id"):
        link = OrderLink(po_id=row["po_id"], po_number=row.get("po_number") or "")
    method = row.get("sourcing_method")
    return RequisitionLine(
        line_no=int(row["line_no"]),
        material_id=row["material_id"],
        quantity=float(row["quantity"]),
        uom=row.get("uom") or "EA",
        description=row.get("description") or "",
        requested_quantity=row.get("requested_quantity"),
        review_status=ReviewStatus(row["review_status"]),
        assigned_vendor_id=row.get("assigned_vendor_id"),
        assigned_vendor_name=row.get("assigned_vendor_name"),
        agreed_price=row.get("agreed_price"),
        discount_percent=float(row.get("discount_percent") or 0),
        currency=row.get("currency"),
        lead_time_days=row.get("lead_time_days"),
        sourcing_method=SourcingMethod(method) if method else None,
        sourcing_ref=row.get("sourcing_ref"),
        quote_id=row.get("quote_id"),
        order_link=link,
    )


def _line_values(line: RequisitionLine) -> tuple:
    link = line.order_link
    return (
        line.line_no,
        line.material_id,
        line.description,
        line.quantity,
        line.requested_quantity,
        line.uom,
        line.review_status.value,
        line.assigned_vendor_id,
        line.assigned_vendor_name,
        line.agreed_price,
        line.discount_percent,
        line.currency,
        line.lead_time_days,
        line.sourcing_method.value if line.sourcing_method else None,
        line.sourcing_ref,
        line.quote_id,
        link.po_id if link else None,
        link.po_number if link else None,
    )


class RequisitionRepository(BaseRepository):
    def get(self, db, requisition_id: str) -> Requisition | None:
        row = db.execute(
            """
            SELECT id, number, status, notes, warehouse_id, source_kind, created_by, created_at, version
            FROM requisitions
            WHERE id = ? AND tenant_id = ?
            """,
            (requisition_id, self.tenant_id),
        ).fetchone()
        if not row:
            return None
        return self._hydrate(db, dict(row))

    def list_by_status(self, db, statuses: Iterable[RequisitionStatus]) -> List[Requisition]:
        status_values = [status.value for status in statuses]
        if not status_values:
            return []
        placeholders = ", ".join("?" for _ in status_values)
        rows = db.execute(
            f"""
            SELECT id, number, status, notes, warehouse_id, source_kind, created_by, created_at, version
            FROM requisitions
            WHERE status IN ({placeholders}) AND tenant_id = ?
            ORDER BY number
            """,
            (*status_values, self.tenant_id),
        ).fetchall()
        return [self._hydrate(db, dict(row)) for row in rows]

    def _hydrate(self, db, header: dict) -> Requisition:
        line_rows = db.execute(
            f"""
            SELECT {", ".join(_LINE_COLUMNS)}
            FROM requisition_lines
            WHERE requisition_id = ? AND tenant_id = ?
            ORDER BY line_no
            """,
            (header["id"], self.tenant_id),
        ).fetchall()
        return Requisition(
            id=header["id"],
            number=header["number"],
            status=RequisitionStatus(header["status"]),
            lines=tuple(_line_from_row(dict(row)) for row in line_rows),
            notes=header.get("notes"),
            warehouse_id=header.get("warehouse_id"),
            source_kind=header.get("source_kind") or "manual",
            created_by=header.get("created_by"),
            created_at=header.get("created_at"),
            version=int(header["version"]),
        )

    def insert(self, db, requisition: Requisition) -> None:
        db.execute(
            """
            INSERT INTO requisitions (
                id, tenant_id, number, status, notes, warehouse_id, source_kind, created_by, created_at, version
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                requisition.id,
                self.tenant_id,
                requisition.number,
                requisition.status.value,
                requisition.notes,
                requisition.warehouse_id,
                requisition.source_kind,
                requisition.created_by,
                requisition.created_at,
            ),
        )
        self._insert_lines(db, requisition)

    def update(self, db, requisition: Requisition) -> None:
        cursor = db.execute(
            """
            UPDATE requisitions
            SET status = ?, notes = ?, version = version + 1
            WHERE id = ? AND tenant_id = ? AND version = ?
            """,
            (requisition.status.value, requisition.notes, requisition.id, self.tenant_id, requisition.version),
        )
        self.require_versioned_write(cursor, "requisition", requisition.id)
        db.execute(
            "DELETE FROM requisition_lines WHERE requisition_id = ? AND tenant_id = ?",
            (requisition.id, self.tenant_id),
        )
        self._insert_lines(db, requisition)

    def _insert_lines(self, db, requisition: Requisition) -> None:
        placeholders = ", ".join("?" for _ in range(len(_LINE_COLUMNS) + 2))
        for line in requisition.lines:
            db.execute(
                f"""
                INSERT INTO requisition_lines (tenant_id, requisition_id, {", ".join(_LINE_COLUMNS)})
                VALUES ({placeholders})
                """,
                (self.tenant_id, requisition.id, *_line_values(line)),
            )

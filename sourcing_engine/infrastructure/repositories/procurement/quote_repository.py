from __future__ import annotations

from typing import Iterable, List

from sourcing_engine.domain.models import LeadTimeUnit, Quote, QuoteItem, QuoteStatus
from sourcing_engine.infrastructure.repositories.base import BaseRepository


_HEADER_COLUMNS = (
    "id",
    "rfq_id",
    "rfq_number",
    "quote_number",
    "vendor_id",
    "vendor_name",
    "vendor_code",
    "status",
    "total_value",
    "reference_number",
    "quote_date",
    "valid_until",
    "tax_percentage",
    "overall_discount",
    "currency",
    "payment_terms",
    "incoterm",
    "sent_at",
    "award_reason",
    "awarded_at",
    "awarded_by",
    "exception_notice_id",
    "created_at",
    "version",
)

# mutable after creation
_UPDATE_COLUMNS = _HEADER_COLUMNS[7:22]


def _item_from_row(row: dict) -> QuoteItem:
    unit = row.get("lead_time_unit")
    return QuoteItem(
        material_id=row["material_id"],
        quantity=float(row["quantity"]),
        uom=row.get("uom") or "EA",
        description=row.get("description") or "",
        requisition_id=row.get("requisition_id"),
        line_no=int(row["line_no"]) if row.get("line_no") is not None else None,
        quoted_unit_price=row.get("quoted_unit_price"),
        quoted_discount=float(row.get("quoted_discount") or 0),
        quoted_total=row.get("quoted_total"),
        lead_time_value=row.get("lead_time_value"),
        lead_time_unit=LeadTimeUnit(unit) if unit else None,
    )


def _header_value(quote: Quote, column: str):
    value = getattr(quote, column)
    if column == "status":
        return value.value
    return value


class QuoteRepository(BaseRepository):
    def get(self, db, quote_id: str) -> Quote | None:
        row = db.execute(
            f"""
            SELECT {", ".join(_HEADER_COLUMNS)}
            FROM quotes
            WHERE id = ? AND tenant_id = ?
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        if not row:
            return None
        return self._hydrate(db, dict(row))

    def list_for_rfq(self, db, rfq_id: str) -> List[Quote]:
        rows = db.execute(
            f"""
            SELECT {", ".join(_HEADER_COLUMNS)}
            FROM quotes
            WHERE rfq_id = ? AND tenant_id = ?
            ORDER BY quote_number
            """,
            (rfq_id, self.tenant_id),
        ).fetchall()
        return [self._hydrate(db, dict(row)) for row in rows]

    def list_for_material(self, db, material_id: str, statuses: Iterable[QuoteStatus]) -> List[Quote]:
        status_values = [status.value for status in statuses]
        if not status_values:
            return []
        placeholders = ", ".join("?" for _ in status_values)
        columns = ", ".join(f"q.{column}" for column in _HEADER_COLUMNS)
        rows = db.execute(
            f"""
            SELECT DISTINCT {columns}
            FROM quotes q
            JOIN quote_items qi ON qi.quote_id = q.id AND qi.tenant_id = q.tenant_id
            WHERE qi.material_id = ? AND q.status IN ({placeholders}) AND q.tenant_id = ?
            ORDER BY q.quote_number
            """,
            (material_id, *status_values, self.tenant_id),
        ).fetchall()
        return [self._hydrate(db, dict(row)) for row in rows]

    def _hydrate(self, db, header: dict) -> Quote:
        item_rows = db.execute(
            """
            SELECT material_id, description, quantity, uom, requisition_id, line_no,
                   quoted_unit_price, quoted_discount, quoted_total, lead_time_value, lead_time_unit
            FROM quote_items
            WHERE quote_id = ? AND tenant_id = ?
            ORDER BY position
            """,
            (header["id"], self.tenant_id),
        ).fetchall()
        values = dict(header)
        values["status"] = QuoteStatus(header["status"])
        values["total_value"] = float(header.get("total_value") or 0)
        values["tax_percentage"] = float(header.get("tax_percentage") or 0)
        values["overall_discount"] = float(header.get("overall_discount") or 0)
        values["version"] = int(header["version"])
        values["items"] = tuple(_item_from_row(dict(row)) for row in item_rows)
        return Quote(**values)

    def insert(self, db, quote: Quote) -> None:
        columns = _HEADER_COLUMNS[:-1]
        placeholders = ", ".join("?" for _ in columns)
        db.execute(
            f"""
            INSERT INTO quotes (tenant_id, {", ".join(columns)}, version)
            VALUES (?, {placeholders}, 1)
            """,
            (self.tenant_id, *(_header_value(quote, column) for column in columns)),
        )
        self._insert_items(db, quote)

    def update(self, db, quote: Quote) -> None:
        assignments = ", ".join(f"{column} = ?" for column in _UPDATE_COLUMNS)
        cursor = db.execute(
            f"""
            UPDATE quotes
            SET {assignments}, version = version + 1
            WHERE id = ? AND tenant_id = ? AND version = ?
            """,
            (*(_header_value(quote, column) for column in _UPDATE_COLUMNS), quote.id, self.tenant_id, quote.version),
        )
        self.require_versioned_write(cursor, "quote", quote.id)
        db.execute("DELETE FROM quote_items WHERE quote_id = ? AND tenant_id = ?", (quote.id, self.tenant_id))
        self._insert_items(db, quote)

    def _insert_items(self, db, quote: Quote) -> None:
        for position, item in enumerate(quote.items, start=1):
            db.execute(
                """
                INSERT INTO quote_items (
                    tenant_id, quote_id, position, material_id, description, quantity, uom,
                    requisition_id, line_no, quoted_unit_price, quoted_discount, quoted_total,
                    lead_time_value, lead_time_unit
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    self.tenant_id,
                    quote.id,
                    position,
                    item.material_id,
                    item.description,
                    item.quantity,
                    item.uom,
                    item.requisition_id,
                    item.line_no,
                    item.quoted_unit_price,
                    item.quoted_discount,
                    item.quoted_total,
                    item.lead_time_value,
                    item.lead_time_unit.value if item.lead_time_unit else None,
                ),
            )

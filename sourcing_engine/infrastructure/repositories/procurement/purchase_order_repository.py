from __future__ import annotations

from dataclasses import fields

from sourcing_engine.domain.models import OrderStatus, POItem, PurchaseOrder
from sourcing_engine.infrastructure.repositories.base import BaseRepository


_ITEM_COLUMNS = tuple(item.name for item in fields(POItem))
_FLOAT_ITEM_COLUMNS = {
    "quantity",
    "unit_price",
    "price_unit",
    "discount_percent",
    "discount_amount",
    "tax_percent",
    "tax_amount",
    "net_amount",
    "total_amount",
}


def _split_ids(raw: str | None) -> tuple:
    return tuple(part for part in str(raw or "").split(",") if part)


class PurchaseOrderRepository(BaseRepository):
    def get(self, db, purchase_order_id: str) -> PurchaseOrder | None:
        row = db.execute(
            """
            SELECT id, po_number, vendor_id, vendor_name, category_id, currency, status,
                   sub_total, total_tax, grand_total, issue_date, expected_delivery_date,
                   notes, requisition_ids, created_at, version
            FROM purchase_orders
            WHERE id = ? AND tenant_id = ?
            """,
            (purchase_order_id, self.tenant_id),
        ).fetchone()
        if not row:
            return None
        header = dict(row)
        item_rows = db.execute(
            f"""
            SELECT {", ".join(_ITEM_COLUMNS)}
            FROM purchase_order_items
            WHERE purchase_order_id = ? AND tenant_id = ?
            ORDER BY line_no
            """,
            (purchase_order_id, self.tenant_id),
        ).fetchall()
        items = []
        for item_row in item_rows:
            values = dict(item_row)
            for column in _FLOAT_ITEM_COLUMNS:
                values[column] = float(values.get(column) or 0)
            values["line_no"] = int(values["line_no"])
            values["pr_line_no"] = int(values["pr_line_no"])
            items.append(POItem(**values))
        return PurchaseOrder(
            id=header["id"],
            po_number=header["po_number"],
            vendor_id=header["vendor_id"],
            vendor_name=header.get("vendor_name"),
            category_id=header.get("category_id"),
            currency=header.get("currency"),
            status=OrderStatus(header["status"]),
            items=tuple(items),
            sub_total=float(header.get("sub_total") or 0),
            total_tax=float(header.get("total_tax") or 0),
            grand_total=float(header.get("grand_total") or 0),
            issue_date=header.get("issue_date"),
            expected_delivery_date=header.get("expected_delivery_date"),
            notes=header.get("notes"),
            requisition_ids=_split_ids(header.get("requisition_ids")),
            created_at=header.get("created_at"),
            version=int(header["version"]),
        )

    def insert(self, db, order: PurchaseOrder) -> None:
        db.execute(
            """
            INSERT INTO purchase_orders (
                id, tenant_id, po_number, vendor_id, vendor_name, category_id, currency, status,
                sub_total, total_tax, grand_total, issue_date, expected_delivery_date, notes,
                requisition_ids, created_at, version
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                order.id,
                self.tenant_id,
                order.po_number,
                order.vendor_id,
                order.vendor_name,
                order.category_id,
                order.currency,
                order.status.value,
                order.sub_total,
                order.total_tax,
                order.grand_total,
                order.issue_date,
                order.expected_delivery_date,
                order.notes,
                ",".join(order.requisition_ids),
                order.created_at,
            ),
        )
        self._insert_items(db, order)

    def update(self, db, order: PurchaseOrder) -> None:
        cursor = db.execute(
            """
            UPDATE purchase_orders
            SET category_id = ?, currency = ?, status = ?, sub_total = ?, total_tax = ?, grand_total = ?,
                expected_delivery_date = ?, notes = ?, requisition_ids = ?, version = version + 1
            WHERE id = ? AND tenant_id = ? AND version = ?
            """,
            (
                order.category_id,
                order.currency,
                order.status.value,
                order.sub_total,
                order.total_tax,
                order.grand_total,
                order.expected_delivery_date,
                order.notes,
                ",".join(order.requisition_ids),
                order.id,
                self.tenant_id,
                order.version,
            ),
        )
        self.require_versioned_write(cursor, "purchase_order", order.id)
        db.execute(
            "DELETE FROM purchase_order_items WHERE purchase_order_id = ? AND tenant_id = ?",
            (order.id, self.tenant_id),
        )
        self._insert_items(db, order)

    def _insert_items(self, db, order: PurchaseOrder) -> None:
        placeholders = ", ".join("?" for _ in range(len(_ITEM_COLUMNS) + 2))
        for item in order.items:
            db.execute(
                f"""
                INSERT INTO purchase_order_items (tenant_id, purchase_order_id, {", ".join(_ITEM_COLUMNS)})
                VALUES ({placeholders})
                """,
                (self.tenant_id, order.id, *(getattr(item, column) for column in _ITEM_COLUMNS)),
            )

from __future__ import annotations

from typing import List

from sourcing_engine.domain.models import Material, Thresholds, Vendor, VendorSourcingRecord
from sourcing_engine.infrastructure.repositories.base import BaseRepository, utc_now_iso


class MasterDataRepository(BaseRepository):
    """Vendors, materials and per-vendor sourcing terms.

    These are maintained by the surrounding master-data screens; the engine
    only reads them, apart from the upserts used for intake and seeding.
    """

    def get_vendor(self, db, vendor_id: str) -> Vendor | None:
        row = db.execute(
            """
            SELECT id, vendor_code, name, status, currency, created_at
            FROM vendors
            WHERE id = ? AND tenant_id = ?
            """,
            (vendor_id, self.tenant_id),
        ).fetchone()
        return Vendor(**dict(row)) if row else None

    def insert_vendor(self, db, vendor: Vendor) -> None:
        db.execute(
            """
            INSERT INTO vendors (id, tenant_id, vendor_code, name, status, currency, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                vendor.id,
                self.tenant_id,
                vendor.vendor_code,
                vendor.name,
                vendor.status,
                vendor.currency,
                vendor.created_at or utc_now_iso(),
            ),
        )

    def get_material(self, db, material_id: str) -> Material | None:
        row = db.execute(
            """
            SELECT id, code, description, procurement_category, uom, price_unit, oem_part_number,
                   ocm_part_number, total_lead_time_days, last_purchase_price, currency
            FROM materials
            WHERE id = ? AND tenant_id = ?
            """,
            (material_id, self.tenant_id),
        ).fetchone()
        if not row:
            return None
        values = dict(row)
        values["price_unit"] = float(values.get("price_unit") or 1)
        return Material(**values)

    def upsert_material(self, db, material: Material) -> None:
        db.execute("DELETE FROM materials WHERE id = ? AND tenant_id = ?", (material.id, self.tenant_id))
        db.execute(
            """
            INSERT INTO materials (
                id, tenant_id, code, description, procurement_category, uom, price_unit, oem_part_number,
                ocm_part_number, total_lead_time_days, last_purchase_price, currency
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                material.id,
                self.tenant_id,
                material.code,
                material.description,
                material.procurement_category,
                material.uom,
                material.price_unit,
                material.oem_part_number,
                material.ocm_part_number,
                material.total_lead_time_days,
                material.last_purchase_price,
                material.currency,
            ),
        )

    def list_sourcing_records(self, db, material_id: str) -> List[VendorSourcingRecord]:
        rows = db.execute(
            """
            SELECT mv.material_id, mv.vendor_id, v.name AS vendor_name, v.vendor_code, mv.priority,
                   mv.has_agreement, mv.agreement_status, mv.agreement_ref, mv.price, mv.currency,
                   mv.lead_time_days, mv.min_order_qty, mv.valid_from, mv.valid_to, mv.tax_percent,
                   mv.discount_percent, mv.payment_terms, mv.incoterm
            FROM material_vendors mv
            LEFT JOIN vendors v ON v.id = mv.vendor_id AND v.tenant_id = mv.tenant_id
            WHERE mv.material_id = ? AND mv.tenant_id = ?
            ORDER BY mv.priority, mv.vendor_id
            """,
            (material_id, self.tenant_id),
        ).fetchall()
        records = []
        for row in rows:
            values = dict(row)
            values["has_agreement"] = bool(values.get("has_agreement"))
            values["tax_percent"] = float(values.get("tax_percent") or 0)
            values["discount_percent"] = float(values.get("discount_percent") or 0)
            records.append(VendorSourcingRecord(**values))
        return records

    def upsert_sourcing_record(self, db, record: VendorSourcingRecord) -> None:
        db.execute(
            "DELETE FROM material_vendors WHERE material_id = ? AND vendor_id = ? AND tenant_id = ?",
            (record.material_id, record.vendor_id, self.tenant_id),
        )
        db.execute(
            """
            INSERT INTO material_vendors (
                tenant_id, material_id, vendor_id, priority, has_agreement, agreement_status, agreement_ref,
                price, currency, lead_time_days, min_order_qty, valid_from, valid_to, tax_percent,
                discount_percent, payment_terms, incoterm
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.tenant_id,
                record.material_id,
                record.vendor_id,
                record.priority,
                1 if record.has_agreement else 0,
                record.agreement_status,
                record.agreement_ref,
                record.price,
                record.currency,
                record.lead_time_days,
                record.min_order_qty,
                record.valid_from,
                record.valid_to,
                record.tax_percent,
                record.discount_percent,
                record.payment_terms,
                record.incoterm,
            ),
        )

    def get_thresholds(self, db) -> Thresholds | None:
        row = db.execute(
            """
            SELECT three_quote_threshold, tender_threshold
            FROM threshold_settings
            WHERE tenant_id = ?
            """,
            (self.tenant_id,),
        ).fetchone()
        if not row:
            return None
        return Thresholds(
            three_quote_threshold=float(row["three_quote_threshold"] or 0),
            tender_threshold=float(row["tender_threshold"] or 0),
        )

    def save_thresholds(self, db, thresholds: Thresholds) -> None:
        db.execute("DELETE FROM threshold_settings WHERE tenant_id = ?", (self.tenant_id,))
        db.execute(
            """
            INSERT INTO threshold_settings (tenant_id, three_quote_threshold, tender_threshold, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (self.tenant_id, thresholds.three_quote_threshold, thresholds.tender_threshold, utc_now_iso()),
        )

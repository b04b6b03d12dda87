from __future__ import annotations

from typing import Any

from sourcing_engine.application.unit_of_work import ReadView, TransactionRunner, WritePlan, new_document_id
from sourcing_engine.domain.contracts import ServiceOutput
from sourcing_engine.domain.models import Material, Thresholds, Vendor, VendorSourcingRecord
from sourcing_engine.errors import ValidationError
from sourcing_engine.infrastructure.repositories.base import utc_now_iso
from sourcing_engine.infrastructure.repositories.procurement import MasterDataRepository
from sourcing_engine.messages import success_message


def _threshold_value(raw: Any, field_name: str) -> float:
    try:
        value = float(raw if raw not in (None, "") else 0)
    except (TypeError, ValueError):
        raise ValidationError(code="thresholds_invalid", payload={"field": field_name}) from None
    if value < 0:
        raise ValidationError(code="thresholds_invalid", payload={"field": field_name})
    return value


class MasterDataService:
    """Boundary to vendor, material and threshold data owned outside the engine."""

    def __init__(self, runner: TransactionRunner | None = None) -> None:
        self.runner = runner or TransactionRunner()

    def register_vendor(
        self,
        db,
        *,
        tenant_id: str,
        name: str,
        currency: str | None = None,
        status: str = "Active",
    ) -> ServiceOutput:
        legal_name = str(name or "").strip()
        if not legal_name:
            raise ValidationError(code="vendor_name_required")

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            vendor = Vendor(
                id=new_document_id(),
                vendor_code=plan.next_number(view, "vendor"),
                name=legal_name,
                status=status or "Active",
                currency=(currency or "").strip().upper() or None,
                created_at=utc_now_iso(),
            )
            plan.add_vendor(vendor)
            plan.payload = {"vendor": vendor.to_payload(), "message": success_message("vendor_registered")}
            plan.status_code = 201

        return self.runner.run(db, tenant_id=tenant_id, operation="register_vendor", plan_fn=plan_fn)

    def upsert_material(self, db, *, tenant_id: str, material: Material) -> None:
        with db.transaction():
            MasterDataRepository(tenant_id=tenant_id).upsert_material(db, material)

    def upsert_sourcing_record(self, db, *, tenant_id: str, record: VendorSourcingRecord) -> None:
        with db.transaction():
            MasterDataRepository(tenant_id=tenant_id).upsert_sourcing_record(db, record)

    def get_thresholds(self, db, *, tenant_id: str) -> ServiceOutput:
        def read_fn(view: ReadView) -> ServiceOutput:
            return ServiceOutput(payload={"thresholds": view.thresholds().to_payload()})

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

    def save_thresholds(
        self,
        db,
        *,
        tenant_id: str,
        three_quote_threshold: Any,
        tender_threshold: Any,
    ) -> ServiceOutput:
        thresholds = Thresholds(
            three_quote_threshold=_threshold_value(three_quote_threshold, "three_quote_threshold"),
            tender_threshold=_threshold_value(tender_threshold, "tender_threshold"),
        )

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            plan.set_thresholds(thresholds)
            plan.payload = {"thresholds": thresholds.to_payload(), "message": success_message("thresholds_saved")}

        return self.runner.run(db, tenant_id=tenant_id, operation="save_thresholds", plan_fn=plan_fn)

    def list_exception_notices(self, db, *, tenant_id: str, limit: int = 100) -> ServiceOutput:
        def read_fn(view: ReadView) -> ServiceOutput:
            notices = view.exception_notices(limit=limit)
            return ServiceOutput(payload={"items": [notice.to_payload() for notice in notices]})

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

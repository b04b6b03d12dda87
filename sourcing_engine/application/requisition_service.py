from __future__ import annotations

from dataclasses import replace
from typing import List

from sourcing_engine.application.documents import (
    require_line,
    require_material,
    require_quote,
    require_requisition,
    require_rfq,
    require_vendor,
    stage_requisition,
)
from sourcing_engine.application.unit_of_work import ReadView, TransactionRunner, WritePlan, new_document_id
from sourcing_engine.core.event_bus import RequisitionCreated, SourcingAccepted
from sourcing_engine.domain.contracts import (
    ManualSourcingInput,
    RequisitionCreateInput,
    ServiceOutput,
    SourcingAcceptInput,
)
from sourcing_engine.domain.models import (
    QuoteStatus,
    Requisition,
    RequisitionLine,
    RequisitionStatus,
    ReviewStatus,
)
from sourcing_engine.errors import StateConflictError, ValidationError
from sourcing_engine.infrastructure.repositories.base import utc_now_iso
from sourcing_engine.messages import success_message
from sourcing_engine.procurement import order_math, rfq_items
from sourcing_engine.procurement.sourcing import decide_from_quote, ensure_price_terms, resolve_sourcing
from sourcing_engine.procurement.status_flow import RFQ_EDITABLE_STATUSES, review_transition_allowed


REVIEW_TARGETS = frozenset({ReviewStatus.REVIEWED, ReviewStatus.SUPPLIER_ASSIGNED})
# quotes that may stand as the accepted source for a line
SOURCING_QUOTE_STATUSES = (QuoteStatus.AWARDED, QuoteStatus.RECEIVED)


def _validate_lines(create_input: RequisitionCreateInput) -> None:
    if not create_input.lines:
        raise ValidationError(code="items_required")
    seen = set()
    for index, line in enumerate(create_input.lines, start=1):
        if not str(line.material_id or "").strip():
            raise ValidationError(code="material_required", payload={"line": index})
        if line.quantity is None or float(line.quantity) <= 0:
            raise ValidationError(code="quantity_invalid", payload={"line": index})
        # PO items are keyed by requisition and material
        material_id = str(line.material_id).strip()
        if material_id in seen:
            raise ValidationError(code="material_duplicate", payload={"line": index, "material_id": material_id})
        seen.add(material_id)


class RequisitionService:
    def __init__(self, runner: TransactionRunner | None = None) -> None:
        self.runner = runner or TransactionRunner()

    def create_requisition(self, db, *, tenant_id: str, create_input: RequisitionCreateInput) -> ServiceOutput:
        _validate_lines(create_input)

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            lines: List[RequisitionLine] = []
            for index, line_input in enumerate(create_input.lines, start=1):
                material = require_material(view, line_input.material_id.strip())
                quantity = float(line_input.quantity)
                lines.append(
                    RequisitionLine(
                        line_no=index * order_math.LINE_NO_STEP,
                        material_id=material.id,
                        quantity=quantity,
                        uom=line_input.uom or material.uom,
                        description=line_input.description or material.description,
                        requested_quantity=(
                            float(line_input.requested_quantity)
                            if line_input.requested_quantity is not None
                            else quantity
                        ),
                    )
                )
            requisition = Requisition(
                id=new_document_id(),
                number=plan.next_number(view, "requisition"),
                status=RequisitionStatus.CREATED,
                lines=tuple(lines),
                notes=create_input.notes,
                warehouse_id=create_input.warehouse_id,
                source_kind=create_input.source_kind or "manual",
                created_by=create_input.created_by,
                created_at=utc_now_iso(),
                version=1,
            )
            plan.create(requisition)
            plan.record_status("requisition", requisition.id, None, requisition.status.value, "requisition_created")
            plan.emit(
                RequisitionCreated(
                    tenant_id=tenant_id,
                    requisition_id=requisition.id,
                    number=requisition.number,
                    lines=len(lines),
                )
            )
            plan.payload = {
                "requisition": requisition.to_payload(),
                "message": success_message("requisition_created"),
            }
            plan.status_code = 201

        return self.runner.run(db, tenant_id=tenant_id, operation="create_requisition", plan_fn=plan_fn)

    def get_requisition(self, db, *, tenant_id: str, requisition_id: str) -> ServiceOutput:
        def read_fn(view: ReadView) -> ServiceOutput:
            requisition = require_requisition(view, requisition_id)
            return ServiceOutput(
                payload={
                    "requisition": requisition.to_payload(),
                    "status_events": view.status_events("requisition", requisition.id),
                }
            )

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

    def resolve_sourcing(
        self,
        db,
        *,
        tenant_id: str,
        requisition_id: str,
        line_no: int,
        vendor_id: str | None = None,
        manual: ManualSourcingInput | None = None,
    ) -> ServiceOutput:
        """Preview the sourcing decision for a line without changing anything."""

        def read_fn(view: ReadView) -> ServiceOutput:
            requisition = require_requisition(view, requisition_id)
            line = require_line(requisition, line_no)
            material = require_material(view, line.material_id)
            vendor = require_vendor(view, vendor_id) if vendor_id else None
            decision = resolve_sourcing(
                line,
                material=material,
                records=view.sourcing_records(material.id),
                quotes=view.quotes_for_material(material.id, *SOURCING_QUOTE_STATUSES),
                today=view.today,
                requisition_id=requisition.id,
                vendor=vendor,
                manual=manual,
            )
            return ServiceOutput(
                payload={
                    "requisition_id": requisition.id,
                    "line_no": line.line_no,
                    "sourcing": decision.to_payload(),
                }
            )

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

    def review_line(
        self,
        db,
        *,
        tenant_id: str,
        requisition_id: str,
        line_no: int,
        target_status: str,
        vendor_id: str | None = None,
    ) -> ServiceOutput:
        try:
            target = ReviewStatus(str(target_status or "").strip())
        except ValueError:
            raise ValidationError(code="review_transition_invalid", payload={"target_status": target_status}) from None
        if target not in REVIEW_TARGETS:
            raise ValidationError(code="review_transition_invalid", payload={"target_status": target.value})
        if target is ReviewStatus.SUPPLIER_ASSIGNED and not vendor_id:
            raise ValidationError(code="vendor_required")

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, requisition_id)
            line = require_line(requisition, line_no)
            if not review_transition_allowed(line.review_status, target):
                raise StateConflictError(
                    code="review_transition_invalid",
                    payload={"line_no": line.line_no, "from": line.review_status.value, "to": target.value},
                )
            updated = replace(line, review_status=target)
            if target is ReviewStatus.SUPPLIER_ASSIGNED:
                vendor = require_vendor(view, vendor_id)
                updated = replace(updated, assigned_vendor_id=vendor.id, assigned_vendor_name=vendor.name)
            staged = stage_requisition(plan, requisition, requisition.with_line(updated), reason="line_reviewed")
            plan.payload = {"requisition": staged.to_payload(), "message": success_message("line_reviewed")}

        return self.runner.run(db, tenant_id=tenant_id, operation="review_line", plan_fn=plan_fn)

    def accept_sourcing(self, db, *, tenant_id: str, accept_input: SourcingAcceptInput) -> ServiceOutput:
        if accept_input.manual is not None:
            ensure_price_terms(
                accept_input.manual.price, accept_input.manual.discount_percent, line_no=accept_input.line_no
            )

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, accept_input.requisition_id)
            line = require_line(requisition, accept_input.line_no)
            if line.is_processed:
                raise StateConflictError(
                    code="line_already_processed",
                    payload={"requisition_id": requisition.id, "line_no": line.line_no},
                )
            material = require_material(view, line.material_id)
            records = view.sourcing_records(material.id)

            if accept_input.quote_id:
                quote = require_quote(view, accept_input.quote_id, referenced=True)
                decision = decide_from_quote(line, quote, records=records, requisition_id=requisition.id)
                if decision is None:
                    raise StateConflictError(
                        code="quote_cannot_source_line",
                        payload={"quote_id": quote.id, "status": quote.status.value, "line_no": line.line_no},
                    )
            else:
                vendor_id = accept_input.vendor_id or line.assigned_vendor_id
                vendor = require_vendor(view, vendor_id) if vendor_id else None
                decision = resolve_sourcing(
                    line,
                    material=material,
                    records=records,
                    quotes=view.quotes_for_material(material.id, *SOURCING_QUOTE_STATUSES),
                    today=view.today,
                    requisition_id=requisition.id,
                    vendor=vendor,
                    manual=accept_input.manual,
                )

            if not decision.vendor_id:
                raise ValidationError(code="sourcing_vendor_required", payload={"line_no": line.line_no})
            if decision.price is None:
                raise ValidationError(code="sourcing_price_required", payload={"line_no": line.line_no})
            ensure_price_terms(decision.price, decision.discount_percent, line_no=line.line_no)
            vendor_name = decision.vendor_name
            if not vendor_name:
                vendor_name = require_vendor(view, decision.vendor_id).name

            processed = replace(
                line,
                review_status=ReviewStatus.PROCESSED,
                assigned_vendor_id=decision.vendor_id,
                assigned_vendor_name=vendor_name,
                agreed_price=float(decision.price),
                discount_percent=float(decision.discount_percent or 0),
                currency=decision.currency,
                lead_time_days=decision.lead_time_days,
                sourcing_method=decision.sourcing_method,
                sourcing_ref=decision.sourcing_ref,
                quote_id=decision.quote_id or line.quote_id,
            )
            staged = stage_requisition(plan, requisition, requisition.with_line(processed), reason="sourcing_accepted")
            plan.emit(
                SourcingAccepted(
                    tenant_id=tenant_id,
                    requisition_id=requisition.id,
                    line_no=line.line_no,
                    vendor_id=decision.vendor_id,
                    sourcing_method=decision.sourcing_method.value,
                )
            )
            plan.payload = {
                "requisition": staged.to_payload(),
                "sourcing": decision.to_payload(),
                "message": success_message("sourcing_accepted"),
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="accept_sourcing", plan_fn=plan_fn)

    def link_line_to_quote(
        self,
        db,
        *,
        tenant_id: str,
        requisition_id: str,
        line_no: int,
        quote_id: str,
    ) -> ServiceOutput:
        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, requisition_id)
            line = require_line(requisition, line_no)
            quote = require_quote(view, quote_id, referenced=True)
            rfq = require_rfq(view, quote.rfq_id, referenced=True)
            material = require_material(view, line.material_id)
            siblings = view.quotes_for_rfq(rfq.id)

            context = {"requisition_id": requisition.id, "line_no": line.line_no, "quote_id": quote.id}
            if quote.item_for(requisition.id, line.line_no, line.material_id) is not None:
                raise StateConflictError(code="line_already_in_quote", payload=context)
            if not review_transition_allowed(line.review_status, ReviewStatus.RFQ_PROCESS):
                raise StateConflictError(
                    code="review_transition_invalid",
                    payload={**context, "from": line.review_status.value, "to": ReviewStatus.RFQ_PROCESS.value},
                )
            if quote.status is not QuoteStatus.DRAFT:
                raise StateConflictError(code="quote_not_draft", payload={**context, "status": quote.status.value})
            if rfq.status not in RFQ_EDITABLE_STATUSES:
                raise StateConflictError(code="rfq_not_editable", payload={**context, "status": rfq.status.value})
            if not rfq_items.category_matches(rfq, material):
                raise ValidationError(
                    code="category_mismatch",
                    payload={**context, "rfq_category": rfq.category_id, "material_category": material.procurement_category},
                )

            item = rfq_items.rfq_item_for_line(requisition.id, line, material)
            updated_rfq = rfq_items.with_rfq_item(rfq, item)
            if updated_rfq is not rfq:
                plan.save(updated_rfq)
            for changed in rfq_items.mirror_to_drafts(siblings, [item]):
                plan.save(changed)

            routed = replace(
                line,
                review_status=ReviewStatus.RFQ_PROCESS,
                quote_id=quote.id,
                assigned_vendor_id=quote.vendor_id,
                assigned_vendor_name=quote.vendor_name,
            )
            staged = stage_requisition(plan, requisition, requisition.with_line(routed), reason="line_linked_to_quote")
            plan.payload = {
                "requisition": staged.to_payload(),
                "quote_id": quote.id,
                "quote_number": quote.quote_number,
                "message": success_message("line_added_to_quote"),
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="link_line_to_quote", plan_fn=plan_fn)

    def delink_line_from_quote(self, db, *, tenant_id: str, requisition_id: str, line_no: int) -> ServiceOutput:
        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, requisition_id)
            line = require_line(requisition, line_no)
            context = {"requisition_id": requisition.id, "line_no": line.line_no}
            if line.review_status is not ReviewStatus.RFQ_PROCESS or not line.quote_id:
                raise StateConflictError(
                    code="line_not_in_quote",
                    payload={**context, "review_status": line.review_status.value},
                )
            quote = require_quote(view, line.quote_id, referenced=True)
            if quote.status is not QuoteStatus.DRAFT:
                raise StateConflictError(code="quote_not_draft", payload={**context, "status": quote.status.value})
            rfq = require_rfq(view, quote.rfq_id, referenced=True)
            siblings = view.quotes_for_rfq(rfq.id)

            source_key = (requisition.id, line.line_no, line.material_id)
            holders = [entry for entry in siblings if entry.id != quote.id and entry.item_for(*source_key)]
            plan.save(rfq_items.without_quote_item(quote, source_key))
            # Drop the item everywhere only while no supplier has seen it.
            if all(entry.status is QuoteStatus.DRAFT for entry in holders):
                for entry in holders:
                    plan.save(rfq_items.without_quote_item(entry, source_key))
                if rfq.has_source(*source_key):
                    plan.save(rfq_items.without_rfq_item(rfq, source_key))

            released = replace(
                line,
                review_status=ReviewStatus.REVIEWED,
                quote_id=None,
                assigned_vendor_id=None,
                assigned_vendor_name=None,
            )
            staged = stage_requisition(
                plan, requisition, requisition.with_line(released), reason="line_delinked_from_quote"
            )
            plan.payload = {"requisition": staged.to_payload(), "message": success_message("line_removed_from_quote")}

        return self.runner.run(db, tenant_id=tenant_id, operation="delink_line_from_quote", plan_fn=plan_fn)

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List

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
from sourcing_engine.core.event_bus import (
    ExceptionNoticeLogged,
    QuoteAwarded,
    QuoteResponseRecorded,
    RfqCreated,
    SupplierInvited,
)
from sourcing_engine.domain.contracts import (
    AwardInput,
    QuoteResponseInput,
    RfqCreateInput,
    RfqItemSelection,
    ServiceOutput,
)
from sourcing_engine.domain.models import (
    AWARD_REASONS,
    RFQ,
    ExceptionNotice,
    Quote,
    QuoteItem,
    QuoteStatus,
    RequisitionStatus,
    ReviewStatus,
    RfqStatus,
)
from sourcing_engine.errors import StateConflictError, ValidationError
from sourcing_engine.infrastructure.repositories.base import utc_now_iso
from sourcing_engine.messages import success_message
from sourcing_engine.procurement import order_math, rfq_items
from sourcing_engine.procurement.numbering import quote_number
from sourcing_engine.procurement.sourcing import decide_from_quote, ensure_price_terms, parse_lead_time_unit
from sourcing_engine.procurement.status_flow import (
    QUOTE_COUNTED_STATUSES,
    QUOTE_RESPONSE_STATUSES,
    RFQ_EDITABLE_STATUSES,
)
from sourcing_engine.procurement.thresholds import evaluate


LINKABLE_REQUISITION_STATUSES = (RequisitionStatus.CREATED, RequisitionStatus.IN_PROCESS)


def _rfq_payload(rfq: RFQ, quotes: List[Quote]) -> Dict[str, Any]:
    payload = rfq.to_payload()
    payload["quotes"] = [quote.to_payload() for quote in quotes]
    return payload


def _response_item_key(quote: Quote, response_item) -> QuoteItem | None:
    if response_item.requisition_id and response_item.line_no is not None:
        return quote.item_for(response_item.requisition_id, response_item.line_no, response_item.material_id)
    return quote.item_for_material(response_item.material_id)


class QuoteService:
    def __init__(self, runner: TransactionRunner | None = None) -> None:
        self.runner = runner or TransactionRunner()

    def create_rfq(self, db, *, tenant_id: str, create_input: RfqCreateInput) -> ServiceOutput:
        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            rfq = RFQ(
                id=new_document_id(),
                number=plan.next_number(view, "rfq"),
                category_id=(create_input.category_id or "").strip() or None,
                status=RfqStatus.DRAFT,
                valid_until=create_input.valid_until,
                notes=create_input.notes,
                created_at=utc_now_iso(),
                version=1,
            )
            plan.create(rfq)
            plan.record_status("rfq", rfq.id, None, rfq.status.value, "rfq_created")
            plan.emit(RfqCreated(tenant_id=tenant_id, rfq_id=rfq.id, rfq_number=rfq.number))
            plan.payload = {"rfq": _rfq_payload(rfq, []), "message": success_message("rfq_created")}
            plan.status_code = 201

        return self.runner.run(db, tenant_id=tenant_id, operation="create_rfq", plan_fn=plan_fn)

    def get_rfq(self, db, *, tenant_id: str, rfq_id: str) -> ServiceOutput:
        def read_fn(view: ReadView) -> ServiceOutput:
            rfq = require_rfq(view, rfq_id)
            return ServiceOutput(
                payload={
                    "rfq": _rfq_payload(rfq, view.quotes_for_rfq(rfq.id)),
                    "status_events": view.status_events("rfq", rfq.id),
                }
            )

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

    def invite_supplier(self, db, *, tenant_id: str, rfq_id: str, vendor_id: str) -> ServiceOutput:
        if not str(vendor_id or "").strip():
            raise ValidationError(code="vendor_required")

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            rfq = require_rfq(view, rfq_id)
            if rfq.status not in RFQ_EDITABLE_STATUSES:
                raise StateConflictError(code="rfq_not_editable", payload={"rfq_id": rfq.id, "status": rfq.status.value})
            vendor = require_vendor(view, vendor_id)
            existing = next((quote for quote in view.quotes_for_rfq(rfq.id) if quote.vendor_id == vendor.id), None)
            if existing is not None:
                raise StateConflictError(
                    code="supplier_already_invited",
                    payload={"rfq_id": rfq.id, "vendor_id": vendor.id, "quote_id": existing.id},
                )
            quote = Quote(
                id=new_document_id(),
                quote_number=quote_number(rfq.number, vendor.vendor_code),
                rfq_id=rfq.id,
                rfq_number=rfq.number,
                vendor_id=vendor.id,
                status=QuoteStatus.DRAFT,
                vendor_name=vendor.name,
                vendor_code=vendor.vendor_code,
                items=tuple(QuoteItem.from_rfq_item(item) for item in rfq.items),
                currency=vendor.currency,
                created_at=utc_now_iso(),
                version=1,
            )
            plan.create(quote)
            plan.record_status("quote", quote.id, None, quote.status.value, "supplier_invited")
            plan.emit(
                SupplierInvited(tenant_id=tenant_id, rfq_id=rfq.id, quote_id=quote.id, quote_number=quote.quote_number)
            )
            plan.payload = {"quote": quote.to_payload(), "message": success_message("supplier_invited")}
            plan.status_code = 201

        return self.runner.run(db, tenant_id=tenant_id, operation="invite_supplier", plan_fn=plan_fn)

    def list_linkable_items(self, db, *, tenant_id: str, rfq_id: str) -> ServiceOutput:
        def read_fn(view: ReadView) -> ServiceOutput:
            rfq = require_rfq(view, rfq_id)
            materials: Dict[str, Any] = {}
            items: List[Dict[str, Any]] = []
            for requisition in view.requisitions_by_status(*LINKABLE_REQUISITION_STATUSES):
                for line in requisition.lines:
                    if line.quote_id or line.is_linked or line.is_processed:
                        continue
                    if rfq.has_source(requisition.id, line.line_no, line.material_id):
                        continue
                    if line.material_id not in materials:
                        materials[line.material_id] = view.material(line.material_id)
                    material = materials[line.material_id]
                    if material is None or not rfq_items.category_matches(rfq, material):
                        continue
                    items.append(
                        {
                            "requisition_id": requisition.id,
                            "requisition_number": requisition.number,
                            "line_no": line.line_no,
                            "material_id": line.material_id,
                            "description": line.description or material.description,
                            "quantity": line.quantity,
                            "uom": line.uom,
                            "review_status": line.review_status.value,
                        }
                    )
            return ServiceOutput(payload={"rfq_id": rfq.id, "items": items})

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

    def link_requisition_items(
        self,
        db,
        *,
        tenant_id: str,
        rfq_id: str,
        selections: List[RfqItemSelection],
    ) -> ServiceOutput:
        if not selections:
            raise ValidationError(code="items_required")

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            rfq = require_rfq(view, rfq_id)
            if rfq.status not in RFQ_EDITABLE_STATUSES:
                raise StateConflictError(code="rfq_not_editable", payload={"rfq_id": rfq.id, "status": rfq.status.value})
            quotes = view.quotes_for_rfq(rfq.id)

            added = []
            skipped: List[Dict[str, Any]] = []
            updated_rfq = rfq
            for selection in selections:
                requisition = require_requisition(view, selection.requisition_id, referenced=True)
                line = require_line(requisition, selection.line_no)
                entry = {"requisition_id": requisition.id, "line_no": line.line_no}
                if updated_rfq.has_source(requisition.id, line.line_no, line.material_id):
                    skipped.append({**entry, "reason": "already_on_rfq"})
                    continue
                if line.is_linked:
                    skipped.append({**entry, "reason": "line_already_linked"})
                    continue
                material = require_material(view, line.material_id)
                if not rfq_items.category_matches(rfq, material):
                    skipped.append({**entry, "reason": "category_mismatch"})
                    continue
                item = rfq_items.rfq_item_for_line(requisition.id, line, material)
                updated_rfq = rfq_items.with_rfq_item(updated_rfq, item)
                added.append(item)

            if added:
                plan.save(updated_rfq)
                for changed in rfq_items.mirror_to_drafts(quotes, added):
                    plan.save(changed)
            plan.payload = {
                "rfq": updated_rfq.to_payload(),
                "added": [item.to_payload() for item in added],
                "skipped": skipped,
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="link_requisition_items", plan_fn=plan_fn)

    def send_quote(self, db, *, tenant_id: str, quote_id: str) -> ServiceOutput:
        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            quote = require_quote(view, quote_id)
            if quote.status is not QuoteStatus.DRAFT:
                raise StateConflictError(code="quote_not_draft", payload={"quote_id": quote.id, "status": quote.status.value})
            rfq = require_rfq(view, quote.rfq_id, referenced=True)
            if rfq.status not in RFQ_EDITABLE_STATUSES:
                raise StateConflictError(code="rfq_not_editable", payload={"rfq_id": rfq.id, "status": rfq.status.value})

            sent = replace(quote, status=QuoteStatus.SENT, sent_at=utc_now_iso())
            plan.save(sent)
            plan.record_status("quote", quote.id, quote.status.value, sent.status.value, "quote_sent")
            if rfq.status is RfqStatus.DRAFT:
                plan.save(replace(rfq, status=RfqStatus.OPEN))
                plan.record_status("rfq", rfq.id, rfq.status.value, RfqStatus.OPEN.value, "quote_sent")
            plan.payload = {"quote": sent.to_payload(), "message": success_message("quote_sent")}

        return self.runner.run(db, tenant_id=tenant_id, operation="send_quote", plan_fn=plan_fn)

    def close_rfq(self, db, *, tenant_id: str, rfq_id: str) -> ServiceOutput:
        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            rfq = require_rfq(view, rfq_id)
            if rfq.status is RfqStatus.CLOSED:
                raise StateConflictError(code="rfq_already_closed", payload={"rfq_id": rfq.id, "status": rfq.status.value})
            if rfq.status not in RFQ_EDITABLE_STATUSES:
                raise StateConflictError(code="rfq_not_editable", payload={"rfq_id": rfq.id, "status": rfq.status.value})
            closed = replace(rfq, status=RfqStatus.CLOSED)
            plan.save(closed)
            plan.record_status("rfq", rfq.id, rfq.status.value, closed.status.value, "rfq_closed")
            plan.payload = {"rfq": closed.to_payload(), "message": success_message("rfq_closed")}

        return self.runner.run(db, tenant_id=tenant_id, operation="close_rfq", plan_fn=plan_fn)

    def record_response(self, db, *, tenant_id: str, response_input: QuoteResponseInput) -> ServiceOutput:
        units = {}
        for index, item in enumerate(response_input.items):
            try:
                units[index] = parse_lead_time_unit(item.lead_time_unit)
            except ValueError:
                raise ValidationError(
                    code="lead_time_unit_invalid",
                    payload={"material_id": item.material_id, "lead_time_unit": item.lead_time_unit},
                ) from None
            ensure_price_terms(item.quoted_unit_price, item.quoted_discount, material_id=item.material_id)
        ensure_price_terms(None, response_input.overall_discount, quote_id=response_input.quote_id)
        if float(response_input.tax_percentage or 0) < 0:
            raise ValidationError(
                code="tax_invalid",
                payload={"quote_id": response_input.quote_id, "tax_percentage": response_input.tax_percentage},
            )

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            quote = require_quote(view, response_input.quote_id)
            if (response_input.confirmation_number or "").strip() != quote.rfq_number:
                raise ValidationError(code="confirmation_mismatch", payload={"quote_id": quote.id})
            if quote.status not in QUOTE_RESPONSE_STATUSES:
                raise StateConflictError(
                    code="quote_not_open_for_response",
                    payload={"quote_id": quote.id, "status": quote.status.value},
                )

            priced = {item.source_key: item for item in quote.items}
            for index, response_item in enumerate(response_input.items):
                target = _response_item_key(quote, response_item)
                if target is None:
                    raise ValidationError(
                        code="quote_item_unknown",
                        payload={"quote_id": quote.id, "material_id": response_item.material_id},
                    )
                if response_item.quoted_unit_price is None:
                    raise ValidationError(
                        code="quoted_price_required",
                        payload={"quote_id": quote.id, "material_id": response_item.material_id},
                    )
                unit_price = float(response_item.quoted_unit_price)
                discount = float(response_item.quoted_discount or 0)
                priced[target.source_key] = replace(
                    target,
                    quoted_unit_price=unit_price,
                    quoted_discount=discount,
                    quoted_total=order_math.quote_item_total(unit_price, target.quantity, discount),
                    lead_time_value=response_item.lead_time_value,
                    lead_time_unit=units[index],
                )

            items = tuple(priced[item.source_key] for item in quote.items)
            unpriced = [item.material_id for item in items if item.quoted_unit_price is None]
            if unpriced:
                raise ValidationError(code="quoted_price_required", payload={"quote_id": quote.id, "materials": unpriced})

            total_value = order_math.money(sum(Decimal(str(item.quoted_total or 0)) for item in items))
            received = replace(
                quote,
                items=items,
                status=QuoteStatus.RECEIVED,
                total_value=total_value,
                reference_number=response_input.reference_number,
                quote_date=response_input.quote_date,
                valid_until=response_input.valid_until,
                tax_percentage=float(response_input.tax_percentage or 0),
                overall_discount=float(response_input.overall_discount or 0),
                currency=response_input.currency or quote.currency,
                payment_terms=response_input.payment_terms,
                incoterm=response_input.incoterm,
            )
            plan.save(received)
            plan.record_status("quote", quote.id, quote.status.value, received.status.value, "quote_response_recorded")
            plan.emit(QuoteResponseRecorded(tenant_id=tenant_id, quote_id=quote.id, total_value=total_value))
            plan.payload = {"quote": received.to_payload(), "message": success_message("quote_response_recorded")}

        return self.runner.run(db, tenant_id=tenant_id, operation="record_quote_response", plan_fn=plan_fn)

    def award_quote(self, db, *, tenant_id: str, award_input: AwardInput) -> ServiceOutput:
        """Award a received quote.

        The value is checked against the tenant thresholds using the number of
        received or awarded quotes on the same RFQ. An award that misses its
        rule goes through only with a justification, which is logged as an
        exception notice. The quote's requisition lines become PROCESSED with
        the quote as their source.
        """
        reason = (award_input.award_reason or "").strip()
        if reason not in AWARD_REASONS:
            raise ValidationError(code="award_reason_invalid", payload={"award_reason": award_input.award_reason})
        justification = (award_input.justification or "").strip()

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            quote = require_quote(view, award_input.quote_id)
            if quote.status is not QuoteStatus.RECEIVED:
                raise StateConflictError(
                    code="quote_not_received",
                    payload={"quote_id": quote.id, "status": quote.status.value},
                )
            rfq = require_rfq(view, quote.rfq_id, referenced=True)
            if rfq.status is RfqStatus.AWARDED:
                raise StateConflictError(code="rfq_already_awarded", payload={"rfq_id": rfq.id})

            quote_count = sum(1 for entry in view.quotes_for_rfq(rfq.id) if entry.status in QUOTE_COUNTED_STATUSES)
            evaluation = evaluate(quote.total_value, quote_count, view.thresholds())
            if not evaluation.satisfied and not justification:
                raise ValidationError(
                    code="justification_required",
                    payload={"quote_id": quote.id, "evaluation": evaluation.to_payload()},
                )

            # Everything the award touches is read before anything is staged.
            requisitions = {}
            records = {}
            for item in quote.items:
                if item.requisition_id and item.requisition_id not in requisitions:
                    requisitions[item.requisition_id] = require_requisition(view, item.requisition_id, referenced=True)
                if item.material_id not in records:
                    records[item.material_id] = view.sourcing_records(item.material_id)

            now = utc_now_iso()
            notice = None
            if not evaluation.satisfied:
                notice = ExceptionNotice(
                    id=new_document_id(),
                    notice_number=plan.next_number(view, "exception_notice"),
                    quote_id=quote.id,
                    quote_number=quote.quote_number,
                    supplier_name=quote.vendor_name,
                    quote_value=quote.total_value,
                    threshold_limit=evaluation.threshold_limit,
                    violation_type=evaluation.violation_type,
                    award_reason=reason,
                    justification=justification,
                    rfq_id=rfq.id,
                    rfq_number=rfq.number,
                    created_by=award_input.awarded_by,
                    created_at=now,
                )
                plan.add_notice(notice)
                plan.emit(
                    ExceptionNoticeLogged(
                        tenant_id=tenant_id,
                        notice_id=notice.id,
                        notice_number=notice.notice_number,
                        violation_type=notice.violation_type.value,
                    )
                )

            awarded = replace(
                quote,
                status=QuoteStatus.AWARDED,
                award_reason=reason,
                awarded_at=now,
                awarded_by=award_input.awarded_by,
                exception_notice_id=notice.id if notice else None,
            )
            plan.save(awarded)
            plan.record_status("quote", quote.id, quote.status.value, awarded.status.value, reason)
            plan.save(replace(rfq, status=RfqStatus.AWARDED))
            plan.record_status("rfq", rfq.id, rfq.status.value, RfqStatus.AWARDED.value, "quote_awarded")

            processed_lines = []
            for requisition_id, requisition in requisitions.items():
                updated = requisition
                for item in awarded.items:
                    if item.requisition_id != requisition_id or item.line_no is None:
                        continue
                    line = updated.line(item.line_no)
                    if line is None or line.is_processed:
                        continue
                    decision = decide_from_quote(line, awarded, records=records[item.material_id], requisition_id=requisition_id)
                    if decision is None:
                        continue
                    updated = updated.with_line(
                        replace(
                            line,
                            review_status=ReviewStatus.PROCESSED,
                            assigned_vendor_id=decision.vendor_id,
                            assigned_vendor_name=decision.vendor_name,
                            agreed_price=float(decision.price),
                            discount_percent=decision.discount_percent,
                            currency=decision.currency,
                            lead_time_days=decision.lead_time_days,
                            sourcing_method=decision.sourcing_method,
                            sourcing_ref=decision.sourcing_ref,
                            quote_id=awarded.id,
                        )
                    )
                    processed_lines.append({"requisition_id": requisition_id, "line_no": line.line_no})
                if updated is not requisition:
                    stage_requisition(plan, requisition, updated, reason="quote_awarded")

            plan.emit(
                QuoteAwarded(
                    tenant_id=tenant_id,
                    quote_id=quote.id,
                    rfq_id=rfq.id,
                    award_reason=reason,
                    required_rule=evaluation.required.value,
                    exception_notice_id=notice.id if notice else None,
                )
            )
            plan.payload = {
                "quote": awarded.to_payload(),
                "rfq_status": RfqStatus.AWARDED.value,
                "evaluation": evaluation.to_payload(),
                "exception_notice": notice.to_payload() if notice else None,
                "processed_lines": processed_lines,
                "poEligible": True,
                "message": success_message("quote_awarded"),
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="award_quote", plan_fn=plan_fn)

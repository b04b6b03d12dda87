from __future__ import annotations

from dataclasses import replace

from sourcing_engine.domain.models import (
    RFQ,
    Material,
    PurchaseOrder,
    Quote,
    Requisition,
    RequisitionLine,
    Vendor,
)
from sourcing_engine.errors import NotFoundError, ReferentialIntegrityError
from sourcing_engine.procurement.status_flow import rolled_up_status


def _missing(message_key: str, referenced: bool, **context):
    # The addressed document answers 404; a document it points at answers 409.
    error_class = ReferentialIntegrityError if referenced else NotFoundError
    return error_class(message_key=message_key, payload=context)


def require_requisition(view, requisition_id: str, *, referenced: bool = False) -> Requisition:
    requisition = view.requisition(requisition_id)
    if requisition is None:
        raise _missing("requisition_not_found", referenced, requisition_id=requisition_id)
    return requisition


def require_line(requisition: Requisition, line_no: int) -> RequisitionLine:
    line = requisition.line(line_no)
    if line is None:
        raise NotFoundError(
            message_key="line_not_found",
            payload={"requisition_id": requisition.id, "line_no": line_no},
        )
    return line


def require_rfq(view, rfq_id: str, *, referenced: bool = False) -> RFQ:
    rfq = view.rfq(rfq_id)
    if rfq is None:
        raise _missing("rfq_not_found", referenced, rfq_id=rfq_id)
    return rfq


def require_quote(view, quote_id: str, *, referenced: bool = False) -> Quote:
    quote = view.quote(quote_id)
    if quote is None:
        raise _missing("quote_not_found", referenced, quote_id=quote_id)
    return quote


def require_order(view, purchase_order_id: str, *, referenced: bool = False) -> PurchaseOrder:
    order = view.purchase_order(purchase_order_id)
    if order is None:
        raise _missing("order_not_found", referenced, po_id=purchase_order_id)
    return order


def require_vendor(view, vendor_id: str) -> Vendor:
    vendor = view.vendor(vendor_id)
    if vendor is None:
        raise ReferentialIntegrityError(message_key="vendor_not_found", payload={"vendor_id": vendor_id})
    return vendor


def require_material(view, material_id: str) -> Material:
    material = view.material(material_id)
    if material is None:
        raise ReferentialIntegrityError(message_key="material_not_found", payload={"material_id": material_id})
    return material


def stage_requisition(
    plan,
    before: Requisition,
    after: Requisition,
    *,
    reason: str,
    allow_regression: bool = False,
) -> Requisition:
    """Roll the header status up from the new lines and stage the requisition."""
    status = rolled_up_status(before.status, after.lines, allow_regression=allow_regression)
    staged = replace(after, status=status)
    plan.save(staged)
    plan.record_status("requisition", staged.id, before.status.value, staged.status.value, reason)
    return staged

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Iterable

from sourcing_engine.domain.models import (
    Material,
    POItem,
    PurchaseOrder,
    Quote,
    Requisition,
    RequisitionLine,
    VendorSourcingRecord,
)
from sourcing_engine.errors import StateConflictError, ValidationError
from sourcing_engine.procurement import order_math


def ensure_line_linkable(order: PurchaseOrder, requisition: Requisition, line: RequisitionLine) -> None:
    context = {"po_id": order.id, "requisition_id": requisition.id, "line_no": line.line_no}
    if not order.accepts_item_changes:
        raise StateConflictError(
            code="order_not_editable",
            payload={**context, "status": order.status.value},
        )
    if not line.is_processed:
        raise StateConflictError(
            code="line_not_processed",
            payload={**context, "review_status": line.review_status.value},
        )
    if line.is_linked:
        raise StateConflictError(
            code="line_already_linked",
            payload={**context, "linked_po_id": line.order_link.po_id, "linked_po_number": line.order_link.po_number},
        )
    if line.assigned_vendor_id != order.vendor_id:
        raise ValidationError(
            code="vendor_mismatch",
            payload={**context, "line_vendor_id": line.assigned_vendor_id, "order_vendor_id": order.vendor_id},
        )
    if order.item_for(requisition.id, line.material_id) is not None:
        raise StateConflictError(
            code="duplicate_order_item",
            payload={**context, "material_id": line.material_id},
        )


def build_order_item(
    order: PurchaseOrder,
    requisition: Requisition,
    line: RequisitionLine,
    *,
    material: Material,
    record: VendorSourcingRecord | None,
    quote: Quote | None,
    today: date,
    buffer_days: int = order_math.DEFAULT_DELIVERY_BUFFER_DAYS,
) -> POItem:
    lead_time = line.lead_time_days
    if lead_time is None and record is not None:
        lead_time = record.lead_time_days
    if lead_time is None:
        lead_time = material.total_lead_time_days

    tax_percent = float(record.tax_percent or 0) if record else 0.0
    amounts = order_math.compute_item_amounts(
        quantity=line.quantity,
        unit_price=float(line.agreed_price or 0),
        price_unit=material.price_unit,
        discount_percent=line.discount_percent,
        tax_percent=tax_percent,
    )
    return POItem(
        line_no=0,
        material_id=line.material_id,
        pr_id=requisition.id,
        pr_line_no=line.line_no,
        quantity=line.quantity,
        unit_price=float(line.agreed_price or 0),
        price_unit=float(material.price_unit or 1),
        discount_percent=float(line.discount_percent or 0),
        discount_amount=amounts.discount_amount,
        tax_percent=tax_percent,
        tax_amount=amounts.tax_amount,
        net_amount=amounts.net_amount,
        total_amount=amounts.total_amount,
        delivery_date=order_math.delivery_date(today, lead_time, buffer_days).isoformat(),
        description=material.description or line.description,
        item_number=material.item_number,
        part_number=material.code,
        uom=line.uom or material.uom,
        currency=line.currency or order.currency,
        quote_id=quote.id if quote else None,
        quote_number=quote.quote_number if quote else None,
        sourcing_ref=line.sourcing_ref,
    )


def _with_items(order: PurchaseOrder, items: Iterable[POItem]) -> PurchaseOrder:
    numbered = order_math.renumber(items)
    totals = order_math.order_totals(numbered)
    requisition_ids = tuple(dict.fromkeys(item.pr_id for item in numbered))
    return replace(
        order,
        items=numbered,
        sub_total=totals.sub_total,
        total_tax=totals.total_tax,
        grand_total=totals.grand_total,
        expected_delivery_date=totals.expected_delivery_date,
        requisition_ids=requisition_ids,
    )


def with_item_added(order: PurchaseOrder, item: POItem, *, category_id: str | None = None) -> PurchaseOrder:
    updated = _with_items(order, (*order.items, item))
    if updated.currency is None and item.currency:
        updated = replace(updated, currency=item.currency)
    if updated.category_id is None and category_id:
        updated = replace(updated, category_id=category_id)
    return updated


def with_item_removed(order: PurchaseOrder, pr_id: str, material_id: str) -> PurchaseOrder:
    remaining = [item for item in order.items if not (item.pr_id == pr_id and item.material_id == material_id)]
    return _with_items(order, remaining)

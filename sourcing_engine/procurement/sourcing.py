from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Sequence, Tuple

from sourcing_engine.domain.contracts import ManualSourcingInput
from sourcing_engine.domain.models import (
    LeadTimeUnit,
    Material,
    Quote,
    QuoteItem,
    QuoteStatus,
    RequisitionLine,
    SourcingDecision,
    SourcingMethod,
    Vendor,
    VendorSourcingRecord,
)
from sourcing_engine.errors import ValidationError


LEAD_TIME_DAYS_PER_UNIT: Dict[LeadTimeUnit, int] = {
    LeadTimeUnit.DAYS: 1,
    LeadTimeUnit.WEEKS: 7,
    LeadTimeUnit.MONTHS: 30,
}

ACTIVE_AGREEMENT_STATUS = "Active"


def ensure_price_terms(price: float | None, discount_percent: float | None, **context) -> None:
    if price is not None and float(price) < 0:
        raise ValidationError(code="price_invalid", payload={**context, "price": price})
    if discount_percent is not None and not 0 <= float(discount_percent) <= 100:
        raise ValidationError(code="discount_invalid", payload={**context, "discount_percent": discount_percent})


def parse_lead_time_unit(value: str | LeadTimeUnit | None) -> LeadTimeUnit | None:
    if value is None or value == "":
        return None
    if isinstance(value, LeadTimeUnit):
        return value
    normalized = str(value).strip().lower()
    for unit in LeadTimeUnit:
        if unit.value.lower() == normalized:
            return unit
    raise ValueError(f"unknown lead time unit: {value}")


def lead_time_in_days(value: int | None, unit: LeadTimeUnit | None) -> int | None:
    if value is None:
        return None
    return int(value) * LEAD_TIME_DAYS_PER_UNIT[unit or LeadTimeUnit.DAYS]


def _parse_date(value: str | None) -> date | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    return date.fromisoformat(raw[:10])


def agreement_is_valid(record: VendorSourcingRecord, today: date) -> bool:
    if not record.has_agreement:
        return False
    if (record.agreement_status or "").strip() != ACTIVE_AGREEMENT_STATUS:
        return False
    valid_from = _parse_date(record.valid_from)
    valid_to = _parse_date(record.valid_to)
    if valid_from is not None and today < valid_from:
        return False
    if valid_to is not None and today > valid_to:
        return False
    return True


def _record_rank(record: VendorSourcingRecord) -> tuple:
    priority = record.priority if record.priority is not None else 10**6
    price = record.price if record.price is not None else float("inf")
    return (priority, price, record.vendor_id)


def _from_record(
    record: VendorSourcingRecord,
    method: SourcingMethod,
    material: Material,
) -> SourcingDecision:
    return SourcingDecision(
        vendor_id=record.vendor_id,
        vendor_name=record.vendor_name,
        price=record.price,
        discount_percent=float(record.discount_percent or 0),
        currency=record.currency or material.currency,
        lead_time_days=record.lead_time_days if record.lead_time_days is not None else material.total_lead_time_days,
        sourcing_method=method,
        sourcing_ref=record.agreement_ref,
        tax_percent=float(record.tax_percent or 0),
    )


def quote_candidates(
    line: RequisitionLine,
    quotes: Iterable[Quote],
    *,
    requisition_id: str | None = None,
    vendor_id: str | None = None,
) -> List[Tuple[Quote, QuoteItem]]:
    """Priced quote items usable as the source for a line.

    An awarded quote for the material always counts. A merely received quote
    counts only when it is the quote the line itself was routed through.
    """
    eligible: List[Tuple[Quote, QuoteItem]] = []
    for quote in quotes:
        if vendor_id and quote.vendor_id != vendor_id:
            continue
        own_quote = quote.id == line.quote_id
        if quote.status is not QuoteStatus.AWARDED and not (own_quote and quote.status is QuoteStatus.RECEIVED):
            continue
        item = None
        if own_quote:
            item = quote.item_for(requisition_id, line.line_no, line.material_id)
        item = item or quote.item_for_material(line.material_id)
        if item is None or item.quoted_unit_price is None:
            continue
        eligible.append((quote, item))
    eligible.sort(key=lambda pair: pair[0].awarded_at or "", reverse=True)
    eligible.sort(key=lambda pair: pair[0].id != line.quote_id)
    return eligible


def _from_quote(quote: Quote, item: QuoteItem, records: Sequence[VendorSourcingRecord]) -> SourcingDecision:
    record = next((entry for entry in records if entry.vendor_id == quote.vendor_id), None)
    return SourcingDecision(
        vendor_id=quote.vendor_id,
        vendor_name=quote.vendor_name,
        price=item.quoted_unit_price,
        discount_percent=float(item.quoted_discount or 0),
        currency=quote.currency,
        lead_time_days=lead_time_in_days(item.lead_time_value, item.lead_time_unit),
        sourcing_method=SourcingMethod.RFQ,
        sourcing_ref=quote.quote_number,
        quote_id=quote.id,
        tax_percent=float(record.tax_percent or 0) if record else float(quote.tax_percentage or 0),
    )


def _manual(
    line: RequisitionLine,
    material: Material,
    records: Sequence[VendorSourcingRecord],
    vendor: Vendor | None,
    manual: ManualSourcingInput,
) -> SourcingDecision:
    vendor_id = vendor.id if vendor else line.assigned_vendor_id
    vendor_name = vendor.name if vendor else line.assigned_vendor_name
    record = next((entry for entry in records if vendor_id and entry.vendor_id == vendor_id), None)

    price = manual.price
    if price is None:
        if record is not None and record.price is not None:
            price = record.price
        else:
            price = material.last_purchase_price

    if manual.discount_percent is not None:
        discount = float(manual.discount_percent)
    else:
        discount = float(record.discount_percent or 0) if record else 0.0

    lead_time = manual.lead_time_days
    if lead_time is None:
        lead_time = record.lead_time_days if record and record.lead_time_days is not None else material.total_lead_time_days

    currency = manual.currency or (record.currency if record else None) or (vendor.currency if vendor else None)
    return SourcingDecision(
        vendor_id=vendor_id,
        vendor_name=vendor_name or (record.vendor_name if record else None),
        price=price,
        discount_percent=discount,
        currency=currency or material.currency,
        lead_time_days=lead_time,
        sourcing_method=SourcingMethod.MANUAL,
        sourcing_ref=None,
        tax_percent=float(record.tax_percent or 0) if record else 0.0,
    )


def resolve_sourcing(
    line: RequisitionLine,
    *,
    material: Material,
    records: Sequence[VendorSourcingRecord],
    quotes: Sequence[Quote],
    today: date,
    requisition_id: str | None = None,
    vendor: Vendor | None = None,
    manual: ManualSourcingInput | None = None,
) -> SourcingDecision:
    """Pick vendor, price and terms for a requisition line.

    Order of precedence: an active agreement valid today, the priority 1
    vendor, an accepted quote, then manual entry. Passing a vendor restricts
    the first three steps to that vendor. Manual entry is pre-seeded with the
    last known price when no price is given.
    """
    manual = manual or ManualSourcingInput()
    vendor_id = vendor.id if vendor else None
    pool = [record for record in records if vendor_id is None or record.vendor_id == vendor_id]

    if manual.price is None:
        agreements = sorted((record for record in pool if agreement_is_valid(record, today)), key=_record_rank)
        if agreements and agreements[0].price is not None:
            return _from_record(agreements[0], SourcingMethod.AGREEMENT, material)

        preferred = sorted((record for record in pool if record.priority == 1), key=_record_rank)
        if preferred and preferred[0].price is not None:
            return _from_record(preferred[0], SourcingMethod.PREFERRED_SUPPLIER, material)

        candidates = quote_candidates(line, quotes, requisition_id=requisition_id, vendor_id=vendor_id)
        if candidates:
            quote, item = candidates[0]
            return _from_quote(quote, item, records)

    return _manual(line, material, records, vendor, manual)


def decide_from_quote(
    line: RequisitionLine,
    quote: Quote,
    *,
    records: Sequence[VendorSourcingRecord],
    requisition_id: str | None = None,
) -> SourcingDecision | None:
    """Sourcing taken straight from a chosen quote, or None if it cannot source the line."""
    routed = replace(line, quote_id=quote.id)
    candidates = quote_candidates(routed, [quote], requisition_id=requisition_id)
    if not candidates:
        return None
    chosen, item = candidates[0]
    return _from_quote(chosen, item, records)

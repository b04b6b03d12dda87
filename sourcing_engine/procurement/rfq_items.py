from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List

from sourcing_engine.domain.models import (
    RFQ,
    Material,
    Quote,
    QuoteItem,
    QuoteStatus,
    RequisitionLine,
    RfqItem,
)


def rfq_item_for_line(requisition_id: str, line: RequisitionLine, material: Material | None = None) -> RfqItem:
    description = line.description or (material.description if material else "")
    return RfqItem(
        material_id=line.material_id,
        quantity=line.quantity,
        uom=line.uom,
        description=description,
        requisition_id=requisition_id,
        line_no=line.line_no,
    )


def category_matches(rfq: RFQ, material: Material) -> bool:
    if not rfq.category_id:
        return True
    return (material.procurement_category or "") == rfq.category_id


def with_rfq_item(rfq: RFQ, item: RfqItem) -> RFQ:
    if rfq.has_source(item.requisition_id, item.line_no, item.material_id):
        return rfq
    return replace(rfq, items=(*rfq.items, item))


def without_rfq_item(rfq: RFQ, source_key: tuple) -> RFQ:
    return replace(rfq, items=tuple(item for item in rfq.items if item.source_key != source_key))


def with_quote_items(quote: Quote, items: Iterable[RfqItem]) -> Quote:
    present = {item.source_key for item in quote.items}
    added = tuple(QuoteItem.from_rfq_item(item) for item in items if item.source_key not in present)
    if not added:
        return quote
    return replace(quote, items=(*quote.items, *added))


def without_quote_item(quote: Quote, source_key: tuple) -> Quote:
    return replace(quote, items=tuple(item for item in quote.items if item.source_key != source_key))


def mirror_to_drafts(quotes: Iterable[Quote], items: Iterable[RfqItem]) -> List[Quote]:
    """Draft quotes that changed after copying in the given RFQ items.

    Quotes already sent to a supplier keep the item list the supplier saw.
    """
    item_list = list(items)
    changed: List[Quote] = []
    for quote in quotes:
        if quote.status is not QuoteStatus.DRAFT:
            continue
        updated = with_quote_items(quote, item_list)
        if updated is not quote:
            changed.append(updated)
    return changed

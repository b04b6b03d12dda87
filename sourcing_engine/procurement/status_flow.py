from __future__ import annotations

from typing import Dict, FrozenSet, Iterable

from sourcing_engine.domain.models import (
    OrderStatus,
    QuoteStatus,
    RequisitionLine,
    RequisitionStatus,
    ReviewStatus,
    RfqStatus,
)


REVIEW_TRANSITIONS: Dict[ReviewStatus, FrozenSet[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset(
        {
            ReviewStatus.REVIEWED,
            ReviewStatus.SUPPLIER_ASSIGNED,
            ReviewStatus.RFQ_PROCESS,
            ReviewStatus.PROCESSED,
        }
    ),
    ReviewStatus.REVIEWED: frozenset(
        {ReviewStatus.SUPPLIER_ASSIGNED, ReviewStatus.RFQ_PROCESS, ReviewStatus.PROCESSED}
    ),
    ReviewStatus.SUPPLIER_ASSIGNED: frozenset({ReviewStatus.RFQ_PROCESS, ReviewStatus.PROCESSED}),
    ReviewStatus.RFQ_PROCESS: frozenset({ReviewStatus.PROCESSED}),
    ReviewStatus.PROCESSED: frozenset(),
}

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.CREATED: frozenset({OrderStatus.ISSUED, OrderStatus.CANCELLED}),
    OrderStatus.REJECTED: frozenset({OrderStatus.ISSUED, OrderStatus.CANCELLED}),
    OrderStatus.ISSUED: frozenset(
        {OrderStatus.RECEIVED, OrderStatus.REJECTED, OrderStatus.CANCELLED, OrderStatus.CLOSED}
    ),
    OrderStatus.RECEIVED: frozenset({OrderStatus.CLOSED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.CLOSED: frozenset(),
}

RFQ_EDITABLE_STATUSES = frozenset({RfqStatus.DRAFT, RfqStatus.OPEN})
QUOTE_RESPONSE_STATUSES = frozenset({QuoteStatus.DRAFT, QuoteStatus.SENT})
# statuses counted as a competing offer when checking the minimum quote rule
QUOTE_COUNTED_STATUSES = frozenset({QuoteStatus.RECEIVED, QuoteStatus.AWARDED})

_REQUISITION_RANK = {
    RequisitionStatus.CREATED: 0,
    RequisitionStatus.IN_PROCESS: 1,
    RequisitionStatus.PROCESSED: 2,
    RequisitionStatus.LINKED: 3,
}


def review_transition_allowed(current: ReviewStatus, target: ReviewStatus, *, delink: bool = False) -> bool:
    if delink:
        return current is ReviewStatus.RFQ_PROCESS and target is ReviewStatus.REVIEWED
    return target in REVIEW_TRANSITIONS.get(current, frozenset())


def order_transition_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS.get(current, frozenset())


def computed_requisition_status(lines: Iterable[RequisitionLine]) -> RequisitionStatus:
    line_list = list(lines)
    if line_list and all(line.is_linked for line in line_list):
        return RequisitionStatus.LINKED
    if line_list and all(line.is_processed for line in line_list):
        return RequisitionStatus.PROCESSED
    if any(line.review_status is not ReviewStatus.PENDING for line in line_list):
        return RequisitionStatus.IN_PROCESS
    return RequisitionStatus.CREATED


def rolled_up_status(
    current: RequisitionStatus,
    lines: Iterable[RequisitionLine],
    *,
    allow_regression: bool = False,
) -> RequisitionStatus:
    """Recompute the header status from the lines.

    Only an explicit unlink passes allow_regression; every other mutation can
    move the header forward but never back.
    """
    computed = computed_requisition_status(lines)
    if allow_regression:
        return computed
    if _REQUISITION_RANK[computed] >= _REQUISITION_RANK[current]:
        return computed
    return current

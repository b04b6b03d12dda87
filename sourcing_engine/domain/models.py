from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Tuple


class ReviewStatus(str, Enum):
    PENDING = "Pending"
    REVIEWED = "Reviewed"
    SUPPLIER_ASSIGNED = "Supplier Assigned"
    RFQ_PROCESS = "RFQ Process"
    PROCESSED = "PROCESSED"


class RequisitionStatus(str, Enum):
    CREATED = "CREATED"
    IN_PROCESS = "IN_PROCESS"
    PROCESSED = "PROCESSED"
    LINKED = "LINKED"


class RfqStatus(str, Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    AWARDED = "AWARDED"
    CLOSED = "CLOSED"


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    RECEIVED = "RECEIVED"
    AWARDED = "AWARDED"
    CANCELLED = "CANCELLED"


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    ISSUED = "ISSUED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"


class SourcingMethod(str, Enum):
    AGREEMENT = "Agreement"
    PREFERRED_SUPPLIER = "Preferred Supplier"
    RFQ = "RFQ"
    MANUAL = "Manual"


class LeadTimeUnit(str, Enum):
    DAYS = "Days"
    WEEKS = "Weeks"
    MONTHS = "Months"


class ViolationType(str, Enum):
    INSUFFICIENT_QUOTES = "Insufficient Quotes"
    THRESHOLD_EXCEEDED = "Threshold Exceeded"
    OTHER = "Other"


AWARD_REASONS: Tuple[str, ...] = (
    "Competitive Cost",
    "Best Lead Time",
    "Best Supplier Relations",
    "Quality of Service",
    "Sole Source / OEM",
    "Emergency Requirement",
    "Other",
)


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_serialize(item) for item in value]
    if hasattr(value, "__dataclass_fields__"):
        return {item.name: _serialize(getattr(value, item.name)) for item in fields(value)}
    return value


class PayloadMixin:
    def to_payload(self) -> Dict[str, Any]:
        return _serialize(self)


@dataclass(frozen=True)
class OrderLink(PayloadMixin):
    po_id: str
    po_number: str


@dataclass(frozen=True)
class RequisitionLine(PayloadMixin):
    """One demanded material and the sourcing state the engine keeps for it.

    A line can only carry an order link once it is PROCESSED; constructing
    anything else raises ValueError, so a half-linked line never exists.
    """

    line_no: int
    material_id: str
    quantity: float
    uom: str = "EA"
    description: str = ""
    requested_quantity: float | None = None
    review_status: ReviewStatus = ReviewStatus.PENDING
    assigned_vendor_id: str | None = None
    assigned_vendor_name: str | None = None
    agreed_price: float | None = None
    discount_percent: float = 0.0
    currency: str | None = None
    lead_time_days: int | None = None
    sourcing_method: SourcingMethod | None = None
    sourcing_ref: str | None = None
    quote_id: str | None = None
    order_link: OrderLink | None = None

    def __post_init__(self) -> None:
        if self.order_link is not None and self.review_status is not ReviewStatus.PROCESSED:
            raise ValueError(f"line {self.line_no} cannot be linked while {self.review_status.value}")

    @property
    def is_processed(self) -> bool:
        return self.review_status is ReviewStatus.PROCESSED

    @property
    def is_linked(self) -> bool:
        return self.order_link is not None

    def linked_to(self, link: OrderLink) -> "RequisitionLine":
        return replace(self, order_link=link)

    def unlinked(self) -> "RequisitionLine":
        return replace(self, order_link=None)


@dataclass(frozen=True)
class Requisition(PayloadMixin):
    id: str
    number: str
    status: RequisitionStatus
    lines: Tuple[RequisitionLine, ...]
    notes: str | None = None
    warehouse_id: str | None = None
    source_kind: str = "manual"
    created_by: str | None = None
    created_at: str | None = None
    version: int = 0

    def line(self, line_no: int) -> RequisitionLine | None:
        for line in self.lines:
            if line.line_no == int(line_no):
                return line
        return None

    def with_line(self, updated: RequisitionLine) -> "Requisition":
        lines = tuple(updated if line.line_no == updated.line_no else line for line in self.lines)
        return replace(self, lines=lines)


@dataclass(frozen=True)
class RfqItem(PayloadMixin):
    material_id: str
    quantity: float
    uom: str = "EA"
    description: str = ""
    requisition_id: str | None = None
    line_no: int | None = None

    @property
    def source_key(self) -> tuple:
        return (self.requisition_id, self.line_no, self.material_id)


@dataclass(frozen=True)
class RFQ(PayloadMixin):
    id: str
    number: str
    category_id: str | None
    status: RfqStatus
    items: Tuple[RfqItem, ...] = ()
    valid_until: str | None = None
    notes: str | None = None
    created_at: str | None = None
    version: int = 0

    def has_source(self, requisition_id: str, line_no: int, material_id: str) -> bool:
        key = (requisition_id, int(line_no), material_id)
        return any(item.source_key == key for item in self.items)


@dataclass(frozen=True)
class QuoteItem(PayloadMixin):
    material_id: str
    quantity: float
    uom: str = "EA"
    description: str = ""
    requisition_id: str | None = None
    line_no: int | None = None
    quoted_unit_price: float | None = None
    quoted_discount: float = 0.0
    quoted_total: float | None = None
    lead_time_value: int | None = None
    lead_time_unit: LeadTimeUnit | None = None

    @property
    def source_key(self) -> tuple:
        return (self.requisition_id, self.line_no, self.material_id)

    @classmethod
    def from_rfq_item(cls, item: RfqItem) -> "QuoteItem":
        return cls(
            material_id=item.material_id,
            quantity=item.quantity,
            uom=item.uom,
            description=item.description,
            requisition_id=item.requisition_id,
            line_no=item.line_no,
        )


@dataclass(frozen=True)
class Quote(PayloadMixin):
    id: str
    quote_number: str
    rfq_id: str
    rfq_number: str
    vendor_id: str
    status: QuoteStatus
    vendor_name: str | None = None
    vendor_code: str | None = None
    items: Tuple[QuoteItem, ...] = ()
    total_value: float = 0.0
    reference_number: str | None = None
    quote_date: str | None = None
    valid_until: str | None = None
    tax_percentage: float = 0.0
    overall_discount: float = 0.0
    currency: str | None = None
    payment_terms: str | None = None
    incoterm: str | None = None
    sent_at: str | None = None
    award_reason: str | None = None
    awarded_at: str | None = None
    awarded_by: str | None = None
    exception_notice_id: str | None = None
    created_at: str | None = None
    version: int = 0

    def item_for(self, requisition_id: str, line_no: int, material_id: str) -> QuoteItem | None:
        key = (requisition_id, int(line_no), material_id)
        for item in self.items:
            if item.source_key == key:
                return item
        return None

    def item_for_material(self, material_id: str) -> QuoteItem | None:
        for item in self.items:
            if item.material_id == material_id:
                return item
        return None


@dataclass(frozen=True)
class POItem(PayloadMixin):
    line_no: int
    material_id: str
    pr_id: str
    pr_line_no: int
    quantity: float
    unit_price: float
    price_unit: float = 1.0
    discount_percent: float = 0.0
    discount_amount: float = 0.0
    tax_percent: float = 0.0
    tax_amount: float = 0.0
    net_amount: float = 0.0
    total_amount: float = 0.0
    delivery_date: str | None = None
    description: str = ""
    item_number: str = "N/A"
    part_number: str | None = None
    uom: str = "EA"
    currency: str | None = None
    quote_id: str | None = None
    quote_number: str | None = None
    sourcing_ref: str | None = None


@dataclass(frozen=True)
class PurchaseOrder(PayloadMixin):
    id: str
    po_number: str
    vendor_id: str
    status: OrderStatus
    vendor_name: str | None = None
    category_id: str | None = None
    currency: str | None = None
    items: Tuple[POItem, ...] = ()
    sub_total: float = 0.0
    total_tax: float = 0.0
    grand_total: float = 0.0
    issue_date: str | None = None
    expected_delivery_date: str | None = None
    notes: str | None = None
    requisition_ids: Tuple[str, ...] = ()
    created_at: str | None = None
    version: int = 0

    @property
    def accepts_item_changes(self) -> bool:
        return self.status in (OrderStatus.CREATED, OrderStatus.REJECTED)

    def item_for(self, pr_id: str, material_id: str) -> POItem | None:
        for item in self.items:
            if item.pr_id == pr_id and item.material_id == material_id:
                return item
        return None


@dataclass(frozen=True)
class ExceptionNotice(PayloadMixin):
    id: str
    notice_number: str
    quote_id: str
    quote_number: str
    supplier_name: str | None
    quote_value: float
    threshold_limit: float
    violation_type: ViolationType
    award_reason: str
    justification: str
    rfq_id: str | None = None
    rfq_number: str | None = None
    status: str = "Logged"
    created_by: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Vendor(PayloadMixin):
    id: str
    vendor_code: str
    name: str
    status: str = "Active"
    currency: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Material(PayloadMixin):
    id: str
    code: str
    description: str = ""
    procurement_category: str | None = None
    uom: str = "EA"
    price_unit: float = 1.0
    oem_part_number: str | None = None
    ocm_part_number: str | None = None
    total_lead_time_days: int | None = None
    last_purchase_price: float | None = None
    currency: str | None = None

    @property
    def item_number(self) -> str:
        return self.ocm_part_number or self.oem_part_number or "N/A"


@dataclass(frozen=True)
class VendorSourcingRecord(PayloadMixin):
    """A vendor's standing terms for one material."""

    material_id: str
    vendor_id: str
    vendor_name: str | None = None
    vendor_code: str | None = None
    priority: int | None = None
    has_agreement: bool = False
    agreement_status: str | None = None
    agreement_ref: str | None = None
    price: float | None = None
    currency: str | None = None
    lead_time_days: int | None = None
    min_order_qty: float | None = None
    valid_from: str | None = None
    valid_to: str | None = None
    tax_percent: float = 0.0
    discount_percent: float = 0.0
    payment_terms: str | None = None
    incoterm: str | None = None


@dataclass(frozen=True)
class Thresholds(PayloadMixin):
    three_quote_threshold: float = 0.0
    tender_threshold: float = 0.0


@dataclass(frozen=True)
class SourcingDecision(PayloadMixin):
    vendor_id: str | None
    vendor_name: str | None
    price: float | None
    discount_percent: float
    currency: str | None
    lead_time_days: int | None
    sourcing_method: SourcingMethod
    sourcing_ref: str | None = None
    quote_id: str | None = None
    tax_percent: float = 0.0

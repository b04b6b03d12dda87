from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class RequisitionLineInput:
    material_id: str
    quantity: float
    uom: str | None = None
    description: str | None = None
    requested_quantity: float | None = None


@dataclass(frozen=True)
class RequisitionCreateInput:
    lines: List[RequisitionLineInput]
    notes: str | None = None
    warehouse_id: str | None = None
    source_kind: str = "manual"
    created_by: str | None = None


@dataclass(frozen=True)
class ManualSourcingInput:
    price: float | None = None
    discount_percent: float | None = None
    currency: str | None = None
    lead_time_days: int | None = None


@dataclass(frozen=True)
class SourcingAcceptInput:
    requisition_id: str
    line_no: int
    vendor_id: str | None = None
    quote_id: str | None = None
    manual: ManualSourcingInput = field(default_factory=ManualSourcingInput)


@dataclass(frozen=True)
class RfqCreateInput:
    category_id: str | None
    valid_until: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class QuoteResponseItemInput:
    material_id: str
    quoted_unit_price: float | None
    quoted_discount: float = 0.0
    lead_time_value: int | None = None
    lead_time_unit: str | None = None
    requisition_id: str | None = None
    line_no: int | None = None


@dataclass(frozen=True)
class QuoteResponseInput:
    quote_id: str
    confirmation_number: str
    items: List[QuoteResponseItemInput]
    reference_number: str | None = None
    quote_date: str | None = None
    valid_until: str | None = None
    tax_percentage: float = 0.0
    overall_discount: float = 0.0
    currency: str | None = None
    payment_terms: str | None = None
    incoterm: str | None = None


@dataclass(frozen=True)
class AwardInput:
    quote_id: str
    award_reason: str
    justification: str | None = None
    awarded_by: str | None = None


@dataclass(frozen=True)
class PurchaseOrderCreateInput:
    vendor_id: str
    category_id: str | None = None
    currency: str | None = None
    notes: str | None = None
    requisition_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RfqItemSelection:
    requisition_id: str
    line_no: int

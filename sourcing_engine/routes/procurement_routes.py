from __future__ import annotations

from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request

from sourcing_engine.application.master_data_service import MasterDataService
from sourcing_engine.application.order_service import OrderService
from sourcing_engine.application.quote_service import QuoteService
from sourcing_engine.application.requisition_service import RequisitionService
from sourcing_engine.application.unit_of_work import TransactionRunner
from sourcing_engine.db import get_db
from sourcing_engine.domain.contracts import (
    AwardInput,
    ManualSourcingInput,
    PurchaseOrderCreateInput,
    QuoteResponseInput,
    QuoteResponseItemInput,
    RequisitionCreateInput,
    RequisitionLineInput,
    RfqCreateInput,
    RfqItemSelection,
    SourcingAcceptInput,
)
from sourcing_engine.domain.models import Thresholds
from sourcing_engine.errors import ValidationError
from sourcing_engine.tenant import scoped_tenant_id


procurement_bp = Blueprint("procurement", __name__)


def _runner() -> TransactionRunner:
    config = current_app.config
    return TransactionRunner(
        max_attempts=int(config.get("TX_MAX_ATTEMPTS", 5)),
        clock=config.get("BUSINESS_DATE_CLOCK"),
        default_thresholds=Thresholds(
            three_quote_threshold=float(config.get("DEFAULT_THREE_QUOTE_THRESHOLD", 0) or 0),
            tender_threshold=float(config.get("DEFAULT_TENDER_THRESHOLD", 0) or 0),
        ),
    )


def _requisitions() -> RequisitionService:
    return RequisitionService(_runner())


def _quotes() -> QuoteService:
    return QuoteService(_runner())


def _orders() -> OrderService:
    buffer_days = int(current_app.config.get("DELIVERY_BUFFER_WORKING_DAYS", 7))
    return OrderService(
        _runner(),
        delivery_buffer_days=buffer_days,
        default_currency=current_app.config.get("DEFAULT_CURRENCY"),
    )


def _master_data() -> MasterDataService:
    return MasterDataService(_runner())


def _payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _text(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def _parse_optional_float(value: Any, field_name: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(payload={"field": field_name}) from None


def _parse_optional_int(value: Any, field_name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(payload={"field": field_name}) from None


def _list(payload: Dict[str, Any], key: str) -> List[Any]:
    value = payload.get(key)
    return value if isinstance(value, list) else []


def _respond(result):
    return jsonify(result.payload), result.status_code


@procurement_bp.route("/api/procurement/requisitions", methods=["POST"])
def create_requisition_api():
    payload = _payload()
    lines = []
    for raw in _list(payload, "lines"):
        if not isinstance(raw, dict):
            continue
        lines.append(
            RequisitionLineInput(
                material_id=str(raw.get("material_id") or "").strip(),
                quantity=_parse_optional_float(raw.get("quantity"), "quantity"),
                uom=_text(raw.get("uom")),
                description=_text(raw.get("description")),
                requested_quantity=_parse_optional_float(raw.get("requested_quantity"), "requested_quantity"),
            )
        )
    result = _requisitions().create_requisition(
        get_db(),
        tenant_id=scoped_tenant_id(),
        create_input=RequisitionCreateInput(
            lines=lines,
            notes=_text(payload.get("notes")),
            warehouse_id=_text(payload.get("warehouse_id")),
            source_kind=_text(payload.get("source_kind")) or "manual",
            created_by=_text(payload.get("created_by")),
        ),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/requisitions/<string:requisition_id>", methods=["GET"])
def get_requisition_api(requisition_id: str):
    result = _requisitions().get_requisition(get_db(), tenant_id=scoped_tenant_id(), requisition_id=requisition_id)
    return _respond(result)


def _manual_input(payload: Dict[str, Any]) -> ManualSourcingInput:
    return ManualSourcingInput(
        price=_parse_optional_float(payload.get("price"), "price"),
        discount_percent=_parse_optional_float(payload.get("discount_percent"), "discount_percent"),
        currency=_text(payload.get("currency")),
        lead_time_days=_parse_optional_int(payload.get("lead_time_days"), "lead_time_days"),
    )


@procurement_bp.route(
    "/api/procurement/requisitions/<string:requisition_id>/lines/<int:line_no>/sourcing",
    methods=["GET"],
)
def resolve_sourcing_api(requisition_id: str, line_no: int):
    result = _requisitions().resolve_sourcing(
        get_db(),
        tenant_id=scoped_tenant_id(),
        requisition_id=requisition_id,
        line_no=line_no,
        vendor_id=_text(request.args.get("vendor_id")),
        manual=_manual_input(request.args),
    )
    return _respond(result)


@procurement_bp.route(
    "/api/procurement/requisitions/<string:requisition_id>/lines/<int:line_no>/review",
    methods=["POST"],
)
def review_line_api(requisition_id: str, line_no: int):
    payload = _payload()
    result = _requisitions().review_line(
        get_db(),
        tenant_id=scoped_tenant_id(),
        requisition_id=requisition_id,
        line_no=line_no,
        target_status=str(payload.get("status") or ""),
        vendor_id=_text(payload.get("vendor_id")),
    )
    return _respond(result)


@procurement_bp.route(
    "/api/procurement/requisitions/<string:requisition_id>/lines/<int:line_no>/accept",
    methods=["POST"],
)
def accept_sourcing_api(requisition_id: str, line_no: int):
    payload = _payload()
    result = _requisitions().accept_sourcing(
        get_db(),
        tenant_id=scoped_tenant_id(),
        accept_input=SourcingAcceptInput(
            requisition_id=requisition_id,
            line_no=line_no,
            vendor_id=_text(payload.get("vendor_id")),
            quote_id=_text(payload.get("quote_id")),
            manual=_manual_input(payload),
        ),
    )
    return _respond(result)


@procurement_bp.route(
    "/api/procurement/requisitions/<string:requisition_id>/lines/<int:line_no>/quote-link",
    methods=["POST", "DELETE"],
)
def line_quote_link_api(requisition_id: str, line_no: int):
    service = _requisitions()
    if request.method == "DELETE":
        result = service.delink_line_from_quote(
            get_db(), tenant_id=scoped_tenant_id(), requisition_id=requisition_id, line_no=line_no
        )
        return _respond(result)

    quote_id = _text(_payload().get("quote_id"))
    if not quote_id:
        raise ValidationError(payload={"field": "quote_id"})
    result = service.link_line_to_quote(
        get_db(),
        tenant_id=scoped_tenant_id(),
        requisition_id=requisition_id,
        line_no=line_no,
        quote_id=quote_id,
    )
    return _respond(result)


@procurement_bp.route(
    "/api/procurement/requisitions/<string:requisition_id>/lines/<int:line_no>/order-link",
    methods=["POST", "DELETE"],
)
def line_order_link_api(requisition_id: str, line_no: int):
    service = _orders()
    if request.method == "DELETE":
        result = service.unlink_line(get_db(), tenant_id=scoped_tenant_id(), requisition_id=requisition_id, line_no=line_no)
        return _respond(result)

    purchase_order_id = _text(_payload().get("purchase_order_id"))
    if not purchase_order_id:
        raise ValidationError(payload={"field": "purchase_order_id"})
    result = service.link_line_to_order(
        get_db(),
        tenant_id=scoped_tenant_id(),
        requisition_id=requisition_id,
        line_no=line_no,
        purchase_order_id=purchase_order_id,
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/requisitions/<string:requisition_id>/order-link", methods=["POST"])
def requisition_order_link_api(requisition_id: str):
    purchase_order_id = _text(_payload().get("purchase_order_id"))
    if not purchase_order_id:
        raise ValidationError(payload={"field": "purchase_order_id"})
    result = _orders().link_requisition_to_order(
        get_db(),
        tenant_id=scoped_tenant_id(),
        requisition_id=requisition_id,
        purchase_order_id=purchase_order_id,
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/rfqs", methods=["POST"])
def create_rfq_api():
    payload = _payload()
    result = _quotes().create_rfq(
        get_db(),
        tenant_id=scoped_tenant_id(),
        create_input=RfqCreateInput(
            category_id=_text(payload.get("category_id")),
            valid_until=_text(payload.get("valid_until")),
            notes=_text(payload.get("notes")),
        ),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/rfqs/<string:rfq_id>", methods=["GET"])
def get_rfq_api(rfq_id: str):
    return _respond(_quotes().get_rfq(get_db(), tenant_id=scoped_tenant_id(), rfq_id=rfq_id))


@procurement_bp.route("/api/procurement/rfqs/<string:rfq_id>/linkable-items", methods=["GET"])
def linkable_items_api(rfq_id: str):
    return _respond(_quotes().list_linkable_items(get_db(), tenant_id=scoped_tenant_id(), rfq_id=rfq_id))


@procurement_bp.route("/api/procurement/rfqs/<string:rfq_id>/items", methods=["POST"])
def link_rfq_items_api(rfq_id: str):
    selections = []
    for raw in _list(_payload(), "items"):
        if not isinstance(raw, dict):
            continue
        requisition_id = _text(raw.get("requisition_id"))
        line_no = _parse_optional_int(raw.get("line_no"), "line_no")
        if not requisition_id or line_no is None:
            raise ValidationError(code="items_required", payload={"item": raw})
        selections.append(RfqItemSelection(requisition_id=requisition_id, line_no=line_no))
    result = _quotes().link_requisition_items(
        get_db(), tenant_id=scoped_tenant_id(), rfq_id=rfq_id, selections=selections
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/rfqs/<string:rfq_id>/suppliers", methods=["POST"])
def invite_supplier_api(rfq_id: str):
    result = _quotes().invite_supplier(
        get_db(),
        tenant_id=scoped_tenant_id(),
        rfq_id=rfq_id,
        vendor_id=_text(_payload().get("vendor_id")),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/rfqs/<string:rfq_id>/close", methods=["POST"])
def close_rfq_api(rfq_id: str):
    return _respond(_quotes().close_rfq(get_db(), tenant_id=scoped_tenant_id(), rfq_id=rfq_id))


@procurement_bp.route("/api/procurement/quotes/<string:quote_id>/send", methods=["POST"])
def send_quote_api(quote_id: str):
    return _respond(_quotes().send_quote(get_db(), tenant_id=scoped_tenant_id(), quote_id=quote_id))


@procurement_bp.route("/api/procurement/quotes/<string:quote_id>/response", methods=["POST"])
def quote_response_api(quote_id: str):
    payload = _payload()
    items = []
    for raw in _list(payload, "items"):
        if not isinstance(raw, dict):
            continue
        items.append(
            QuoteResponseItemInput(
                material_id=str(raw.get("material_id") or "").strip(),
                quoted_unit_price=_parse_optional_float(raw.get("quoted_unit_price"), "quoted_unit_price"),
                quoted_discount=_parse_optional_float(raw.get("quoted_discount"), "quoted_discount") or 0.0,
                lead_time_value=_parse_optional_int(raw.get("lead_time_value"), "lead_time_value"),
                lead_time_unit=_text(raw.get("lead_time_unit")),
                requisition_id=_text(raw.get("requisition_id")),
                line_no=_parse_optional_int(raw.get("line_no"), "line_no"),
            )
        )
    result = _quotes().record_response(
        get_db(),
        tenant_id=scoped_tenant_id(),
        response_input=QuoteResponseInput(
            quote_id=quote_id,
            confirmation_number=str(payload.get("confirmation_number") or ""),
            items=items,
            reference_number=_text(payload.get("reference_number")),
            quote_date=_text(payload.get("quote_date")),
            valid_until=_text(payload.get("valid_until")),
            tax_percentage=_parse_optional_float(payload.get("tax_percentage"), "tax_percentage") or 0.0,
            overall_discount=_parse_optional_float(payload.get("overall_discount"), "overall_discount") or 0.0,
            currency=_text(payload.get("currency")),
            payment_terms=_text(payload.get("payment_terms")),
            incoterm=_text(payload.get("incoterm")),
        ),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/quotes/<string:quote_id>/award", methods=["POST"])
def award_quote_api(quote_id: str):
    payload = _payload()
    result = _quotes().award_quote(
        get_db(),
        tenant_id=scoped_tenant_id(),
        award_input=AwardInput(
            quote_id=quote_id,
            award_reason=str(payload.get("award_reason") or ""),
            justification=_text(payload.get("justification")),
            awarded_by=_text(payload.get("awarded_by")),
        ),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/purchase-orders", methods=["POST"])
def create_purchase_order_api():
    payload = _payload()
    result = _orders().create_purchase_order(
        get_db(),
        tenant_id=scoped_tenant_id(),
        create_input=PurchaseOrderCreateInput(
            vendor_id=str(payload.get("vendor_id") or "").strip(),
            category_id=_text(payload.get("category_id")),
            currency=_text(payload.get("currency")),
            notes=_text(payload.get("notes")),
            requisition_ids=[str(value) for value in _list(payload, "requisition_ids") if _text(value)],
        ),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/purchase-orders/<string:purchase_order_id>", methods=["GET"])
def get_purchase_order_api(purchase_order_id: str):
    result = _orders().get_purchase_order(get_db(), tenant_id=scoped_tenant_id(), purchase_order_id=purchase_order_id)
    return _respond(result)


@procurement_bp.route("/api/procurement/purchase-orders/<string:purchase_order_id>/status", methods=["POST"])
def change_order_status_api(purchase_order_id: str):
    payload = _payload()
    result = _orders().change_order_status(
        get_db(),
        tenant_id=scoped_tenant_id(),
        purchase_order_id=purchase_order_id,
        target_status=str(payload.get("status") or ""),
        reason=_text(payload.get("reason")),
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/settings/thresholds", methods=["GET", "PUT"])
def thresholds_api():
    service = _master_data()
    if request.method == "PUT":
        payload = _payload()
        result = service.save_thresholds(
            get_db(),
            tenant_id=scoped_tenant_id(),
            three_quote_threshold=payload.get("three_quote_threshold"),
            tender_threshold=payload.get("tender_threshold"),
        )
        return _respond(result)
    return _respond(service.get_thresholds(get_db(), tenant_id=scoped_tenant_id()))


@procurement_bp.route("/api/procurement/exception-notices", methods=["GET"])
def exception_notices_api():
    limit = _parse_optional_int(request.args.get("limit"), "limit") or 100
    result = _master_data().list_exception_notices(
        get_db(), tenant_id=scoped_tenant_id(), limit=max(1, min(limit, 500))
    )
    return _respond(result)


@procurement_bp.route("/api/procurement/vendors", methods=["POST"])
def register_vendor_api():
    payload = _payload()
    result = _master_data().register_vendor(
        get_db(),
        tenant_id=scoped_tenant_id(),
        name=str(payload.get("name") or ""),
        currency=_text(payload.get("currency")),
    )
    return _respond(result)

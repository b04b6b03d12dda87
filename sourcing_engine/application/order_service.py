from __future__ import annotations

from dataclasses import replace
from typing import List, Tuple

from sourcing_engine.application.documents import (
    require_line,
    require_material,
    require_order,
    require_quote,
    require_requisition,
    require_vendor,
    stage_requisition,
)
from sourcing_engine.application.unit_of_work import ReadView, TransactionRunner, WritePlan, new_document_id
from sourcing_engine.core.event_bus import (
    OrderLineLinked,
    OrderLineUnlinked,
    PurchaseOrderCreated,
    PurchaseOrderStatusChanged,
)
from sourcing_engine.domain.contracts import PurchaseOrderCreateInput, ServiceOutput
from sourcing_engine.domain.models import (
    OrderLink,
    OrderStatus,
    PurchaseOrder,
    Requisition,
    RequisitionLine,
)
from sourcing_engine.errors import StateConflictError, ValidationError
from sourcing_engine.infrastructure.repositories.base import utc_now_iso
from sourcing_engine.messages import success_message
from sourcing_engine.procurement import consolidation
from sourcing_engine.procurement.order_math import DEFAULT_DELIVERY_BUFFER_DAYS
from sourcing_engine.procurement.status_flow import order_transition_allowed


def _eligible_lines(order: PurchaseOrder, requisition: Requisition) -> List[RequisitionLine]:
    return [
        line
        for line in requisition.lines
        if line.is_processed and not line.is_linked and line.assigned_vendor_id == order.vendor_id
    ]


class OrderService:
    def __init__(
        self,
        runner: TransactionRunner | None = None,
        *,
        delivery_buffer_days: int = DEFAULT_DELIVERY_BUFFER_DAYS,
        default_currency: str | None = None,
    ) -> None:
        self.runner = runner or TransactionRunner()
        self.delivery_buffer_days = int(delivery_buffer_days)
        self.default_currency = default_currency

    def _link(
        self,
        view: ReadView,
        order: PurchaseOrder,
        requisition: Requisition,
        line: RequisitionLine,
    ) -> Tuple[PurchaseOrder, Requisition]:
        consolidation.ensure_line_linkable(order, requisition, line)
        material = require_material(view, line.material_id)
        record = next(
            (entry for entry in view.sourcing_records(material.id) if entry.vendor_id == order.vendor_id),
            None,
        )
        quote = require_quote(view, line.quote_id, referenced=True) if line.quote_id else None
        item = consolidation.build_order_item(
            order,
            requisition,
            line,
            material=material,
            record=record,
            quote=quote,
            today=view.today,
            buffer_days=self.delivery_buffer_days,
        )
        order = consolidation.with_item_added(order, item, category_id=material.procurement_category)
        linked = line.linked_to(OrderLink(po_id=order.id, po_number=order.po_number))
        return order, requisition.with_line(linked)

    def _linked_event(self, tenant_id: str, order: PurchaseOrder, requisition_id: str, line_no: int):
        return OrderLineLinked(
            tenant_id=tenant_id,
            purchase_order_id=order.id,
            requisition_id=requisition_id,
            line_no=line_no,
            grand_total=order.grand_total,
        )

    def create_purchase_order(self, db, *, tenant_id: str, create_input: PurchaseOrderCreateInput) -> ServiceOutput:
        if not str(create_input.vendor_id or "").strip():
            raise ValidationError(code="vendor_required")

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            vendor = require_vendor(view, create_input.vendor_id)
            order = PurchaseOrder(
                id=new_document_id(),
                po_number=plan.next_number(view, "purchase_order"),
                vendor_id=vendor.id,
                status=OrderStatus.CREATED,
                vendor_name=vendor.name,
                category_id=(create_input.category_id or "").strip() or None,
                currency=create_input.currency or vendor.currency or self.default_currency,
                issue_date=view.today.isoformat(),
                notes=create_input.notes,
                created_at=utc_now_iso(),
                version=1,
            )
            linked_lines = []
            for requisition_id in dict.fromkeys(create_input.requisition_ids or []):
                original = require_requisition(view, requisition_id, referenced=True)
                requisition = original
                for line in _eligible_lines(order, original):
                    order, requisition = self._link(view, order, requisition, line)
                    linked_lines.append((requisition.id, line.line_no))
                if requisition is not original:
                    stage_requisition(plan, original, requisition, reason="linked_to_order")

            plan.create(order)
            plan.record_status("purchase_order", order.id, None, order.status.value, "purchase_order_created")
            plan.emit(
                PurchaseOrderCreated(
                    tenant_id=tenant_id,
                    purchase_order_id=order.id,
                    po_number=order.po_number,
                    vendor_id=order.vendor_id,
                )
            )
            for requisition_id, line_no in linked_lines:
                plan.emit(self._linked_event(tenant_id, order, requisition_id, line_no))
            plan.payload = {
                "purchase_order": order.to_payload(),
                "linked_lines": [{"requisition_id": pr_id, "line_no": line_no} for pr_id, line_no in linked_lines],
                "message": success_message("purchase_order_created"),
            }
            plan.status_code = 201

        return self.runner.run(db, tenant_id=tenant_id, operation="create_purchase_order", plan_fn=plan_fn)

    def get_purchase_order(self, db, *, tenant_id: str, purchase_order_id: str) -> ServiceOutput:
        def read_fn(view: ReadView) -> ServiceOutput:
            order = require_order(view, purchase_order_id)
            return ServiceOutput(
                payload={
                    "purchase_order": order.to_payload(),
                    "status_events": view.status_events("purchase_order", order.id),
                }
            )

        return self.runner.read(db, tenant_id=tenant_id, read_fn=read_fn)

    def link_line_to_order(
        self,
        db,
        *,
        tenant_id: str,
        requisition_id: str,
        line_no: int,
        purchase_order_id: str,
    ) -> ServiceOutput:
        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, requisition_id)
            line = require_line(requisition, line_no)
            order = require_order(view, purchase_order_id, referenced=True)
            order, updated = self._link(view, order, requisition, line)
            plan.save(order)
            staged = stage_requisition(plan, requisition, updated, reason="linked_to_order")
            plan.emit(self._linked_event(tenant_id, order, requisition.id, line.line_no))
            plan.payload = {
                "purchase_order": order.to_payload(),
                "requisition": staged.to_payload(),
                "message": success_message("line_linked"),
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="link_line_to_order", plan_fn=plan_fn)

    def link_requisition_to_order(
        self,
        db,
        *,
        tenant_id: str,
        requisition_id: str,
        purchase_order_id: str,
    ) -> ServiceOutput:
        """Link every processed, unlinked line of the order's vendor. All or nothing."""

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, requisition_id)
            order = require_order(view, purchase_order_id, referenced=True)
            if not order.accepts_item_changes:
                raise StateConflictError(
                    code="order_not_editable",
                    payload={"po_id": order.id, "status": order.status.value},
                )
            eligible = _eligible_lines(order, requisition)
            if not eligible:
                raise ValidationError(
                    code="no_eligible_lines",
                    payload={"requisition_id": requisition.id, "vendor_id": order.vendor_id},
                )
            updated = requisition
            for line in eligible:
                order, updated = self._link(view, order, updated, line)
            plan.save(order)
            staged = stage_requisition(plan, requisition, updated, reason="linked_to_order")
            for line in eligible:
                plan.emit(self._linked_event(tenant_id, order, requisition.id, line.line_no))
            plan.payload = {
                "purchase_order": order.to_payload(),
                "requisition": staged.to_payload(),
                "linked_lines": [line.line_no for line in eligible],
                "message": success_message("requisition_linked"),
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="link_requisition_to_order", plan_fn=plan_fn)

    def unlink_line(self, db, *, tenant_id: str, requisition_id: str, line_no: int) -> ServiceOutput:
        """Take a line back out of its purchase order.

        The only operation that lets the requisition header move backwards.
        """

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            requisition = require_requisition(view, requisition_id)
            line = require_line(requisition, line_no)
            if not line.is_linked:
                raise StateConflictError(
                    code="line_not_linked",
                    payload={"requisition_id": requisition.id, "line_no": line.line_no},
                )
            order = require_order(view, line.order_link.po_id, referenced=True)
            if not order.accepts_item_changes:
                raise StateConflictError(
                    code="order_not_editable",
                    payload={"po_id": order.id, "status": order.status.value},
                )
            order = consolidation.with_item_removed(order, requisition.id, line.material_id)
            plan.save(order)
            staged = stage_requisition(
                plan,
                requisition,
                requisition.with_line(line.unlinked()),
                reason="unlinked_from_order",
                allow_regression=True,
            )
            plan.emit(
                OrderLineUnlinked(
                    tenant_id=tenant_id,
                    purchase_order_id=order.id,
                    requisition_id=requisition.id,
                    line_no=line.line_no,
                    grand_total=order.grand_total,
                )
            )
            plan.payload = {
                "purchase_order": order.to_payload(),
                "requisition": staged.to_payload(),
                "message": success_message("line_unlinked"),
            }

        return self.runner.run(db, tenant_id=tenant_id, operation="unlink_line", plan_fn=plan_fn)

    def change_order_status(
        self,
        db,
        *,
        tenant_id: str,
        purchase_order_id: str,
        target_status: str,
        reason: str | None = None,
    ) -> ServiceOutput:
        try:
            target = OrderStatus(str(target_status or "").strip().upper())
        except ValueError:
            raise ValidationError(code="status_invalid", payload={"status": target_status}) from None

        def plan_fn(view: ReadView, plan: WritePlan) -> None:
            order = require_order(view, purchase_order_id)
            if not order_transition_allowed(order.status, target):
                raise StateConflictError(
                    code="order_transition_invalid",
                    payload={"po_id": order.id, "from": order.status.value, "to": target.value},
                )
            changed = replace(order, status=target)
            plan.save(changed)
            plan.record_status("purchase_order", order.id, order.status.value, target.value, reason or "status_changed")
            plan.emit(
                PurchaseOrderStatusChanged(
                    tenant_id=tenant_id,
                    purchase_order_id=order.id,
                    from_status=order.status.value,
                    to_status=target.value,
                )
            )
            plan.payload = {"purchase_order": changed.to_payload(), "message": success_message("order_status_changed")}

        return self.runner.run(db, tenant_id=tenant_id, operation="change_order_status", plan_fn=plan_fn)

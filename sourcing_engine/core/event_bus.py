from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from sourcing_engine.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))
        object.__setattr__(self, "tenant_id", str(self.tenant_id or "").strip() or "unknown")


@dataclass(frozen=True, kw_only=True)
class RequisitionCreated(DomainEvent):
    requisition_id: str
    number: str
    lines: int = 0


@dataclass(frozen=True, kw_only=True)
class SourcingAccepted(DomainEvent):
    requisition_id: str
    line_no: int
    vendor_id: str
    sourcing_method: str


@dataclass(frozen=True, kw_only=True)
class RfqCreated(DomainEvent):
    rfq_id: str
    rfq_number: str


@dataclass(frozen=True, kw_only=True)
class SupplierInvited(DomainEvent):
    rfq_id: str
    quote_id: str
    quote_number: str


@dataclass(frozen=True, kw_only=True)
class QuoteResponseRecorded(DomainEvent):
    quote_id: str
    total_value: float


@dataclass(frozen=True, kw_only=True)
class QuoteAwarded(DomainEvent):
    quote_id: str
    rfq_id: str
    award_reason: str
    required_rule: str
    exception_notice_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ExceptionNoticeLogged(DomainEvent):
    notice_id: str
    notice_number: str
    violation_type: str


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderCreated(DomainEvent):
    purchase_order_id: str
    po_number: str
    vendor_id: str


@dataclass(frozen=True, kw_only=True)
class OrderLineLinked(DomainEvent):
    purchase_order_id: str
    requisition_id: str
    line_no: int
    grand_total: float


@dataclass(frozen=True, kw_only=True)
class OrderLineUnlinked(DomainEvent):
    purchase_order_id: str
    requisition_id: str
    line_no: int
    grand_total: float


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderStatusChanged(DomainEvent):
    purchase_order_id: str
    from_status: str
    to_status: str


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("sourcing_engine")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def publish(self, event: DomainEvent) -> None:
        event_type = type(event).__name__
        observe_domain_event_emitted(event_type)
        self._logger.info(
            "domain_event_published",
            extra={"event_type": event_type, "event_id": event.event_id, "tenant_id": event.tenant_id},
        )
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": event_type})


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS

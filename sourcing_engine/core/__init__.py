from sourcing_engine.core.event_bus import (
    DomainEvent,
    EventBus,
    ExceptionNoticeLogged,
    OrderLineLinked,
    OrderLineUnlinked,
    PurchaseOrderCreated,
    PurchaseOrderStatusChanged,
    QuoteAwarded,
    QuoteResponseRecorded,
    RequisitionCreated,
    RfqCreated,
    SourcingAccepted,
    SupplierInvited,
    get_event_bus,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "RequisitionCreated",
    "SourcingAccepted",
    "RfqCreated",
    "SupplierInvited",
    "QuoteResponseRecorded",
    "QuoteAwarded",
    "ExceptionNoticeLogged",
    "PurchaseOrderCreated",
    "OrderLineLinked",
    "OrderLineUnlinked",
    "PurchaseOrderStatusChanged",
    "get_event_bus",
]

"""Two-phase transactions for the sourcing engine.

Every mutating operation is split into a plan phase and an apply phase that
run inside one store transaction:

* plan: a pure function of a ``ReadView``. It reads every document it needs
  and stages the new document states on a ``WritePlan``. It performs no
  writes.
* apply: the runner closes the view, then writes the staged documents. Any
  read attempted after the view is closed raises, so an operation can never
  read after it has started writing.

Write conflicts (stale ``version`` on a guarded UPDATE, a serialization
failure, a locked database) abort the transaction with
``TransactionAbortError``; the runner replays plan and apply against a fresh
snapshot up to ``max_attempts`` times. Events are published only after a
successful commit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Tuple

from sourcing_engine.core.event_bus import DomainEvent, EventBus, get_event_bus
from sourcing_engine.domain.contracts import ServiceOutput
from sourcing_engine.domain.models import (
    RFQ,
    ExceptionNotice,
    Material,
    PurchaseOrder,
    Quote,
    QuoteStatus,
    Requisition,
    RequisitionStatus,
    Thresholds,
    Vendor,
    VendorSourcingRecord,
)
from sourcing_engine.errors import TransactionAbortError
from sourcing_engine.infrastructure.repositories.procurement import (
    CounterRepository,
    ExceptionNoticeRepository,
    MasterDataRepository,
    PurchaseOrderRepository,
    QuoteRepository,
    RequisitionRepository,
    RfqRepository,
    StatusEventRepository,
)
from sourcing_engine.observability import (
    observe_transaction_abort,
    observe_transaction_attempt,
    observe_transaction_retry,
)
from sourcing_engine.procurement.numbering import CounterState, advance


logger = logging.getLogger("sourcing_engine")


def new_document_id() -> str:
    return uuid.uuid4().hex


class Repositories:
    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        self.counters = CounterRepository(tenant_id=tenant_id)
        self.requisitions = RequisitionRepository(tenant_id=tenant_id)
        self.rfqs = RfqRepository(tenant_id=tenant_id)
        self.quotes = QuoteRepository(tenant_id=tenant_id)
        self.orders = PurchaseOrderRepository(tenant_id=tenant_id)
        self.notices = ExceptionNoticeRepository(tenant_id=tenant_id)
        self.master_data = MasterDataRepository(tenant_id=tenant_id)
        self.status_events = StatusEventRepository(tenant_id=tenant_id)


class ReadView:
    """Read-only access to one transaction's snapshot."""

    def __init__(
        self,
        db,
        repositories: Repositories,
        *,
        today: date,
        default_thresholds: Thresholds | None = None,
    ) -> None:
        self._db = db
        self._repos = repositories
        self._closed = False
        self.today = today
        self.tenant_id = repositories.tenant_id
        self._default_thresholds = default_thresholds or Thresholds()

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _db_for_read(self):
        if self._closed:
            raise RuntimeError("Read view is closed; all reads must happen before the first write.")
        return self._db

    def requisition(self, requisition_id: str) -> Requisition | None:
        return self._repos.requisitions.get(self._db_for_read(), requisition_id)

    def requisitions_by_status(self, *statuses: RequisitionStatus) -> List[Requisition]:
        return self._repos.requisitions.list_by_status(self._db_for_read(), statuses)

    def rfq(self, rfq_id: str) -> RFQ | None:
        return self._repos.rfqs.get(self._db_for_read(), rfq_id)

    def quote(self, quote_id: str) -> Quote | None:
        return self._repos.quotes.get(self._db_for_read(), quote_id)

    def quotes_for_rfq(self, rfq_id: str) -> List[Quote]:
        return self._repos.quotes.list_for_rfq(self._db_for_read(), rfq_id)

    def quotes_for_material(self, material_id: str, *statuses: QuoteStatus) -> List[Quote]:
        return self._repos.quotes.list_for_material(self._db_for_read(), material_id, statuses)

    def purchase_order(self, purchase_order_id: str) -> PurchaseOrder | None:
        return self._repos.orders.get(self._db_for_read(), purchase_order_id)

    def vendor(self, vendor_id: str) -> Vendor | None:
        return self._repos.master_data.get_vendor(self._db_for_read(), vendor_id)

    def material(self, material_id: str) -> Material | None:
        return self._repos.master_data.get_material(self._db_for_read(), material_id)

    def sourcing_records(self, material_id: str) -> List[VendorSourcingRecord]:
        return self._repos.master_data.list_sourcing_records(self._db_for_read(), material_id)

    def thresholds(self) -> Thresholds:
        stored = self._repos.master_data.get_thresholds(self._db_for_read())
        return stored or self._default_thresholds

    def counter(self, domain: str) -> CounterState:
        return self._repos.counters.get(self._db_for_read(), domain)

    def exception_notices(self, *, limit: int = 100) -> List[ExceptionNotice]:
        return self._repos.notices.list_recent(self._db_for_read(), limit=limit)

    def status_events(self, entity: str, entity_id: str) -> list[dict]:
        return self._repos.status_events.list_for_entity(self._db_for_read(), entity, entity_id)


@dataclass
class _StagedStatus:
    entity: str
    entity_id: str
    from_status: str | None
    to_status: str
    reason: str | None


@dataclass
class WritePlan:
    """Document states staged by a plan function, written in one go."""

    payload: Dict[str, Any] = field(default_factory=dict)
    status_code: int = 200
    counters: Dict[str, CounterState] = field(default_factory=dict)
    new_documents: Dict[str, Any] = field(default_factory=dict)
    updated_documents: Dict[str, Any] = field(default_factory=dict)
    notices: List[ExceptionNotice] = field(default_factory=list)
    vendors: List[Vendor] = field(default_factory=list)
    thresholds: Thresholds | None = None
    status_changes: List[_StagedStatus] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)

    def next_number(self, view: ReadView, domain: str) -> str:
        state = self.counters.get(domain)
        if state is None:
            state = view.counter(domain)
        state, number = advance(state)
        self.counters[domain] = state
        return number

    def create(self, document) -> None:
        self.new_documents[document.id] = document

    def save(self, document) -> None:
        if document.id in self.new_documents:
            self.new_documents[document.id] = document
            return
        self.updated_documents[document.id] = document

    def add_notice(self, notice: ExceptionNotice) -> None:
        self.notices.append(notice)

    def add_vendor(self, vendor: Vendor) -> None:
        self.vendors.append(vendor)

    def set_thresholds(self, thresholds: Thresholds) -> None:
        self.thresholds = thresholds

    def record_status(
        self,
        entity: str,
        entity_id: str,
        from_status: str | None,
        to_status: str,
        reason: str | None = None,
    ) -> None:
        if from_status == to_status:
            return
        self.status_changes.append(_StagedStatus(entity, entity_id, from_status, to_status, reason))

    def emit(self, event: DomainEvent) -> None:
        self.events.append(event)

    def output(self) -> ServiceOutput:
        return ServiceOutput(payload=dict(self.payload), status_code=self.status_code)


_INSERTERS: Tuple[Tuple[type, str], ...] = (
    (Requisition, "requisitions"),
    (RFQ, "rfqs"),
    (Quote, "quotes"),
    (PurchaseOrder, "orders"),
)


def _repository_for(repositories: Repositories, document):
    for document_type, attribute in _INSERTERS:
        if isinstance(document, document_type):
            return getattr(repositories, attribute)
    raise TypeError(f"no repository for {type(document).__name__}")


def apply_plan(db, repositories: Repositories, plan: WritePlan) -> None:
    for state in plan.counters.values():
        repositories.counters.save(db, state)
    for vendor in plan.vendors:
        repositories.master_data.insert_vendor(db, vendor)
    for document in plan.new_documents.values():
        _repository_for(repositories, document).insert(db, document)
    for document in plan.updated_documents.values():
        _repository_for(repositories, document).update(db, document)
    for notice in plan.notices:
        repositories.notices.insert(db, notice)
    if plan.thresholds is not None:
        repositories.master_data.save_thresholds(db, plan.thresholds)
    for change in plan.status_changes:
        repositories.status_events.insert(
            db,
            entity=change.entity,
            entity_id=change.entity_id,
            from_status=change.from_status,
            to_status=change.to_status,
            reason=change.reason,
        )


PlanFn = Callable[[ReadView, WritePlan], None]


class TransactionRunner:
    def __init__(
        self,
        *,
        max_attempts: int = 5,
        clock: Callable[[], date] | None = None,
        event_bus: EventBus | None = None,
        default_thresholds: Thresholds | None = None,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.clock = clock or date.today
        self.event_bus = event_bus or get_event_bus()
        self.default_thresholds = default_thresholds or Thresholds()

    def read(self, db, *, tenant_id: str, read_fn: Callable[[ReadView], ServiceOutput]) -> ServiceOutput:
        view = ReadView(db, Repositories(tenant_id), today=self.clock(), default_thresholds=self.default_thresholds)
        try:
            return read_fn(view)
        finally:
            view.close()

    def run(self, db, *, tenant_id: str, operation: str, plan_fn: PlanFn) -> ServiceOutput:
        # One business date per operation, shared by every retry.
        today = self.clock()
        attempt = 0
        while True:
            attempt += 1
            observe_transaction_attempt(operation)
            repositories = Repositories(tenant_id)
            plan = WritePlan()
            try:
                with db.transaction():
                    view = ReadView(db, repositories, today=today, default_thresholds=self.default_thresholds)
                    try:
                        plan_fn(view, plan)
                    finally:
                        view.close()
                    apply_plan(db, repositories, plan)
            except TransactionAbortError as exc:
                if attempt >= self.max_attempts:
                    observe_transaction_abort(operation)
                    logger.error(
                        "transaction_retries_exhausted",
                        extra={"operation": operation, "tenant_id": tenant_id, "attempts": attempt},
                    )
                    raise
                observe_transaction_retry(operation)
                logger.warning(
                    "transaction_conflict_retry",
                    extra={
                        "operation": operation,
                        "tenant_id": tenant_id,
                        "attempt": attempt,
                        "details": exc.details,
                    },
                )
                continue
            break

        logger.info(
            "operation_committed",
            extra={"operation": operation, "tenant_id": tenant_id, "attempts": attempt},
        )
        for event in plan.events:
            self.event_bus.publish(event)
        return plan.output()
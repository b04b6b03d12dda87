import unittest
from datetime import datetime, timezone

from sourcing_engine.application.requisition_service import RequisitionService
from sourcing_engine.core import EventBus, PurchaseOrderCreated, RequisitionCreated
from sourcing_engine.domain.contracts import RequisitionCreateInput, RequisitionLineInput
from tests.helpers.procurement_seed import TENANT, make_runner, open_database, seed_material
from tests.helpers.temp_db import TempDbSandbox


class EventBusTest(unittest.TestCase):
    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        def first_handler(_event):
            execution_trace.append("first")

        def second_handler(_event):
            execution_trace.append("second")

        bus.subscribe(PurchaseOrderCreated, first_handler)
        bus.subscribe(PurchaseOrderCreated, second_handler)
        bus.publish(
            PurchaseOrderCreated(
                tenant_id="tenant-a",
                purchase_order_id="po-1",
                po_number="PO00000001",
                vendor_id="v-1",
            )
        )

        self.assertEqual(execution_trace, ["first", "second"])

    def test_failing_handler_does_not_stop_others(self) -> None:
        bus = EventBus()
        received = []

        def broken_handler(_event):
            raise RuntimeError("boom")

        bus.subscribe(PurchaseOrderCreated, broken_handler)
        bus.subscribe(PurchaseOrderCreated, received.append)
        bus.publish(PurchaseOrderCreated(purchase_order_id="po-1", po_number="PO00000001", vendor_id="v-1"))

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].tenant_id, "unknown")

    def test_event_timestamps_are_utc(self) -> None:
        event = RequisitionCreated(
            tenant_id=" tenant-a ",
            requisition_id="pr-1",
            number="PR00000001",
            occurred_at=datetime(2024, 1, 1, 12, 0),
        )
        self.assertEqual(event.tenant_id, "tenant-a")
        self.assertEqual(event.occurred_at.tzinfo, timezone.utc)
        self.assertTrue(event.event_id)

    def test_requisition_service_emits_requisition_created(self) -> None:
        sandbox = TempDbSandbox(prefix="event_bus")
        db = open_database(sandbox)
        try:
            bus = EventBus()
            received_events = []
            bus.subscribe(RequisitionCreated, received_events.append)
            material = seed_material(db, code="M-1")
            other = seed_material(db, code="M-2")

            service = RequisitionService(make_runner(event_bus=bus))
            result = service.create_requisition(
                db,
                tenant_id=TENANT,
                create_input=RequisitionCreateInput(
                    lines=[
                        RequisitionLineInput(material_id=material.id, quantity=1),
                        RequisitionLineInput(material_id=other.id, quantity=2),
                    ]
                ),
            )
        finally:
            db.close()
            sandbox.cleanup()

        self.assertEqual(result.status_code, 201)
        self.assertEqual(len(received_events), 1)
        event = received_events[0]
        self.assertEqual(event.tenant_id, TENANT)
        self.assertEqual(event.number, "PR00000001")
        self.assertEqual(event.lines, 2)


if __name__ == "__main__":
    unittest.main()

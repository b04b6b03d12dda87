import unittest

from sourcing_engine.application.order_service import OrderService
from sourcing_engine.application.requisition_service import RequisitionService
from sourcing_engine.core.event_bus import EventBus, OrderLineLinked, OrderLineUnlinked
from sourcing_engine.domain.contracts import (
    PurchaseOrderCreateInput,
    RequisitionCreateInput,
    RequisitionLineInput,
    SourcingAcceptInput,
)
from sourcing_engine.errors import (
    NotFoundError,
    ReferentialIntegrityError,
    StateConflictError,
    ValidationError,
)
from tests.helpers.procurement_seed import (
    TENANT,
    make_runner,
    open_database,
    seed_material,
    seed_record,
    seed_vendor,
)
from tests.helpers.temp_db import TempDbSandbox


class OrderServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="order_service")
        self.db = open_database(self._temp_db)
        self.bus = EventBus()
        runner = make_runner(event_bus=self.bus)
        self.service = OrderService(runner, delivery_buffer_days=7, default_currency="USD")
        self.requisitions = RequisitionService(runner)

        self.acme = seed_vendor(self.db, code="V00001", name="Acme Supply")
        self.beta = seed_vendor(self.db, code="V00002", name="Beta Parts", currency="EUR")
        self.bolt = seed_material(self.db, code="BOLT-10", total_lead_time_days=10)
        self.nut = seed_material(self.db, code="NUT-10", total_lead_time_days=5, ocm_part_number="OCM-NUT")
        seed_record(self.db, material=self.bolt, vendor=self.acme, priority=1, price=2.0, tax_percent=10, lead_time_days=5)
        seed_record(self.db, material=self.nut, vendor=self.acme, priority=1, price=1.0)

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def _processed_requisition(self) -> str:
        requisition = self.requisitions.create_requisition(
            self.db,
            tenant_id=TENANT,
            create_input=RequisitionCreateInput(
                lines=[
                    RequisitionLineInput(material_id=self.bolt.id, quantity=10),
                    RequisitionLineInput(material_id=self.nut.id, quantity=20),
                ]
            ),
        ).payload["requisition"]
        for line_no in (10, 20):
            self.requisitions.accept_sourcing(
                self.db,
                tenant_id=TENANT,
                accept_input=SourcingAcceptInput(requisition_id=requisition["id"], line_no=line_no),
            )
        return requisition["id"]

    def _create_order(self, vendor_id: str, requisition_ids=None) -> dict:
        result = self.service.create_purchase_order(
            self.db,
            tenant_id=TENANT,
            create_input=PurchaseOrderCreateInput(vendor_id=vendor_id, requisition_ids=list(requisition_ids or [])),
        )
        self.assertEqual(result.status_code, 201)
        return result.payload["purchase_order"]

    def _requisition(self, requisition_id: str) -> dict:
        return self.requisitions.get_requisition(
            self.db, tenant_id=TENANT, requisition_id=requisition_id
        ).payload["requisition"]

    def _order(self, purchase_order_id: str) -> dict:
        return self.service.get_purchase_order(
            self.db, tenant_id=TENANT, purchase_order_id=purchase_order_id
        ).payload["purchase_order"]

    def _assert_totals_consistent(self, order: dict) -> None:
        net = round(sum(item["net_amount"] for item in order["items"]), 2)
        tax = round(sum(item["tax_amount"] for item in order["items"]), 2)
        self.assertEqual(order["sub_total"], net)
        self.assertEqual(order["total_tax"], tax)
        self.assertEqual(order["grand_total"], round(net + tax, 2))
        self.assertEqual([item["line_no"] for item in order["items"]], [10 * (i + 1) for i in range(len(order["items"]))])

    def test_create_empty_order(self) -> None:
        order = self._create_order(self.acme.id)
        self.assertEqual(order["po_number"], "PO00000001")
        self.assertEqual(order["status"], "CREATED")
        self.assertEqual(order["issue_date"], "2024-01-01")
        self.assertEqual(order["currency"], "USD")
        self.assertEqual(order["items"], [])

        second = self._create_order(self.beta.id)
        self.assertEqual(second["po_number"], "PO00000002")
        self.assertEqual(second["currency"], "EUR")

    def test_sub_cent_unit_price_is_kept_for_item_amounts(self) -> None:
        washer = seed_material(self.db, code="WASHER-M6", total_lead_time_days=5)
        seed_record(self.db, material=washer, vendor=self.acme, priority=1, price=0.125)
        requisition = self.requisitions.create_requisition(
            self.db,
            tenant_id=TENANT,
            create_input=RequisitionCreateInput(lines=[RequisitionLineInput(material_id=washer.id, quantity=1000)]),
        ).payload["requisition"]
        accepted = self.requisitions.accept_sourcing(
            self.db,
            tenant_id=TENANT,
            accept_input=SourcingAcceptInput(requisition_id=requisition["id"], line_no=10),
        ).payload["requisition"]
        self.assertEqual(accepted["lines"][0]["agreed_price"], 0.125)

        order = self._create_order(self.acme.id, [requisition["id"]])
        item = order["items"][0]
        self.assertEqual(item["unit_price"], 0.125)
        self.assertEqual(item["net_amount"], 125.0)
        self.assertEqual(order["sub_total"], 125.0)
        self.assertEqual(order["grand_total"], 125.0)

    def test_unknown_vendor_is_referential_error(self) -> None:
        with self.assertRaises(ReferentialIntegrityError):
            self._create_order("missing-vendor")

    def test_link_line_builds_item_and_totals(self) -> None:
        linked_events = []
        self.bus.subscribe(OrderLineLinked, linked_events.append)
        requisition_id = self._processed_requisition()
        order = self._create_order(self.acme.id)

        result = self.service.link_line_to_order(
            self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10, purchase_order_id=order["id"]
        ).payload
        linked_order = result["purchase_order"]
        item = linked_order["items"][0]
        self.assertEqual(item["line_no"], 10)
        self.assertEqual(item["pr_id"], requisition_id)
        self.assertEqual(item["pr_line_no"], 10)
        self.assertEqual(item["net_amount"], 20.0)
        self.assertEqual(item["tax_amount"], 2.0)
        self.assertEqual(item["total_amount"], 22.0)
        self.assertEqual(item["delivery_date"], "2024-01-17")
        self.assertEqual(linked_order["grand_total"], 22.0)
        self.assertEqual(linked_order["expected_delivery_date"], "2024-01-17")
        self.assertEqual(linked_order["category_id"], "MRO")
        self.assertEqual(linked_order["requisition_ids"], [requisition_id])
        self.assertEqual(result["requisition"]["status"], "PROCESSED")
        self.assertEqual(len(linked_events), 1)

        requisition = self._requisition(requisition_id)
        self.assertEqual(requisition["lines"][0]["order_link"], {"po_id": order["id"], "po_number": "PO00000001"})
        self.assertIsNone(requisition["lines"][1]["order_link"])

    def test_line_links_to_one_order_only(self) -> None:
        requisition_id = self._processed_requisition()
        first = self._create_order(self.acme.id)
        second = self._create_order(self.acme.id)
        self.service.link_line_to_order(
            self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10, purchase_order_id=first["id"]
        )
        with self.assertRaises(StateConflictError) as ctx:
            self.service.link_line_to_order(
                self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10, purchase_order_id=second["id"]
            )
        self.assertEqual(ctx.exception.code, "line_already_linked")
        self.assertEqual(self._order(second["id"])["items"], [])

    def test_vendor_mismatch_rejected(self) -> None:
        requisition_id = self._processed_requisition()
        order = self._create_order(self.beta.id)
        with self.assertRaises(ValidationError) as ctx:
            self.service.link_line_to_order(
                self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10, purchase_order_id=order["id"]
            )
        self.assertEqual(ctx.exception.code, "vendor_mismatch")

    def test_unprocessed_line_cannot_link(self) -> None:
        requisition = self.requisitions.create_requisition(
            self.db,
            tenant_id=TENANT,
            create_input=RequisitionCreateInput(lines=[RequisitionLineInput(material_id=self.bolt.id, quantity=1)]),
        ).payload["requisition"]
        order = self._create_order(self.acme.id)
        with self.assertRaises(StateConflictError) as ctx:
            self.service.link_line_to_order(
                self.db, tenant_id=TENANT, requisition_id=requisition["id"], line_no=10, purchase_order_id=order["id"]
            )
        self.assertEqual(ctx.exception.code, "line_not_processed")

        with self.assertRaises(ValidationError) as ctx:
            self.service.link_requisition_to_order(
                self.db, tenant_id=TENANT, requisition_id=requisition["id"], purchase_order_id=order["id"]
            )
        self.assertEqual(ctx.exception.code, "no_eligible_lines")

    def test_link_then_unlink_restores_order_and_requisition(self) -> None:
        unlinked_events = []
        self.bus.subscribe(OrderLineUnlinked, unlinked_events.append)
        requisition_id = self._processed_requisition()
        order = self._create_order(self.acme.id)

        both = self.service.link_requisition_to_order(
            self.db, tenant_id=TENANT, requisition_id=requisition_id, purchase_order_id=order["id"]
        ).payload
        self.assertEqual(both["linked_lines"], [10, 20])
        self.assertEqual(both["requisition"]["status"], "LINKED")
        self._assert_totals_consistent(both["purchase_order"])
        self.assertEqual(both["purchase_order"]["grand_total"], 42.0)
        nut_item = both["purchase_order"]["items"][1]
        self.assertEqual(nut_item["item_number"], "OCM-NUT")
        self.assertEqual(nut_item["delivery_date"], "2024-01-17")

        result = self.service.unlink_line(
            self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10
        ).payload
        remaining = result["purchase_order"]
        self.assertEqual(len(remaining["items"]), 1)
        self.assertEqual(remaining["items"][0]["pr_line_no"], 20)
        self._assert_totals_consistent(remaining)
        self.assertEqual(remaining["grand_total"], 20.0)
        self.assertEqual(result["requisition"]["status"], "PROCESSED")
        self.assertIsNone(result["requisition"]["lines"][0]["order_link"])
        self.assertEqual(len(unlinked_events), 1)

        relinked = self.service.link_line_to_order(
            self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10, purchase_order_id=order["id"]
        ).payload["purchase_order"]
        self.assertEqual(relinked["grand_total"], 42.0)
        self._assert_totals_consistent(self._order(order["id"]))

        self.service.unlink_line(self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10)
        with self.assertRaises(StateConflictError) as ctx:
            self.service.unlink_line(self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10)
        self.assertEqual(ctx.exception.code, "line_not_linked")

    def test_requisition_link_is_all_or_nothing(self) -> None:
        requisition_id = self._processed_requisition()
        order = self._create_order(self.acme.id)
        self.db.execute("DELETE FROM materials WHERE id = ? AND tenant_id = ?", (self.nut.id, TENANT))

        with self.assertRaises(ReferentialIntegrityError):
            self.service.link_requisition_to_order(
                self.db, tenant_id=TENANT, requisition_id=requisition_id, purchase_order_id=order["id"]
            )
        self.assertEqual(self._order(order["id"])["items"], [])
        requisition = self._requisition(requisition_id)
        self.assertTrue(all(line["order_link"] is None for line in requisition["lines"]))
        self.assertEqual(requisition["status"], "PROCESSED")

    def test_create_with_requisition_links_eligible_lines(self) -> None:
        requisition_id = self._processed_requisition()
        result = self.service.create_purchase_order(
            self.db,
            tenant_id=TENANT,
            create_input=PurchaseOrderCreateInput(vendor_id=self.acme.id, requisition_ids=[requisition_id]),
        ).payload
        self.assertEqual(len(result["linked_lines"]), 2)
        self._assert_totals_consistent(result["purchase_order"])
        self.assertEqual(self._requisition(requisition_id)["status"], "LINKED")

    def test_issued_order_locks_items(self) -> None:
        requisition_id = self._processed_requisition()
        order = self._create_order(self.acme.id)
        self.service.link_line_to_order(
            self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10, purchase_order_id=order["id"]
        )
        issued = self.service.change_order_status(
            self.db, tenant_id=TENANT, purchase_order_id=order["id"], target_status="ISSUED"
        ).payload["purchase_order"]
        self.assertEqual(issued["status"], "ISSUED")

        with self.assertRaises(StateConflictError) as ctx:
            self.service.unlink_line(self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10)
        self.assertEqual(ctx.exception.code, "order_not_editable")
        with self.assertRaises(StateConflictError) as ctx:
            self.service.link_line_to_order(
                self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=20, purchase_order_id=order["id"]
            )
        self.assertEqual(ctx.exception.code, "order_not_editable")

        self.service.change_order_status(
            self.db, tenant_id=TENANT, purchase_order_id=order["id"], target_status="REJECTED"
        )
        result = self.service.unlink_line(self.db, tenant_id=TENANT, requisition_id=requisition_id, line_no=10)
        self.assertEqual(result.payload["purchase_order"]["items"], [])

        history = self.service.get_purchase_order(
            self.db, tenant_id=TENANT, purchase_order_id=order["id"]
        ).payload["status_events"]
        self.assertEqual([event["to_status"] for event in history], ["CREATED", "ISSUED", "REJECTED"])

    def test_status_changes_are_validated(self) -> None:
        order = self._create_order(self.acme.id)
        with self.assertRaises(ValidationError) as ctx:
            self.service.change_order_status(
                self.db, tenant_id=TENANT, purchase_order_id=order["id"], target_status="SHIPPED"
            )
        self.assertEqual(ctx.exception.code, "status_invalid")
        with self.assertRaises(StateConflictError) as ctx:
            self.service.change_order_status(
                self.db, tenant_id=TENANT, purchase_order_id=order["id"], target_status="RECEIVED"
            )
        self.assertEqual(ctx.exception.code, "order_transition_invalid")
        with self.assertRaises(NotFoundError):
            self.service.change_order_status(
                self.db, tenant_id=TENANT, purchase_order_id="missing", target_status="ISSUED"
            )


if __name__ == "__main__":
    unittest.main()

import unittest
from dataclasses import replace

from sourcing_engine.application.requisition_service import RequisitionService
from sourcing_engine.core.event_bus import EventBus, RequisitionCreated
from sourcing_engine.domain.contracts import RequisitionCreateInput, RequisitionLineInput
from sourcing_engine.errors import TransactionAbortError, ValidationError
from tests.helpers.procurement_seed import TENANT, make_runner, open_database, seed_material
from tests.helpers.temp_db import TempDbSandbox


class TransactionRunnerTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="unit_of_work")
        self.db = open_database(self._temp_db)
        self.bus = EventBus()
        self.runner = make_runner(event_bus=self.bus, max_attempts=3)
        material = seed_material(self.db, code="M-100")
        created = RequisitionService(self.runner).create_requisition(
            self.db,
            tenant_id=TENANT,
            create_input=RequisitionCreateInput(lines=[RequisitionLineInput(material_id=material.id, quantity=2)]),
        )
        self.requisition_id = created.payload["requisition"]["id"]

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def test_reads_after_plan_phase_are_rejected(self) -> None:
        captured = {}

        def plan_fn(view, plan) -> None:
            captured["view"] = view

        self.runner.run(self.db, tenant_id=TENANT, operation="noop", plan_fn=plan_fn)
        self.assertTrue(captured["view"].closed)
        with self.assertRaises(RuntimeError):
            captured["view"].requisition(self.requisition_id)

    def test_stale_version_is_retried_without_burning_numbers(self) -> None:
        attempts = []

        def plan_fn(view, plan) -> None:
            attempts.append(len(attempts) + 1)
            requisition = view.requisition(self.requisition_id)
            plan.payload = {"number": plan.next_number(view, "purchase_order")}
            if len(attempts) == 1:
                # Pretend another writer bumped the row after we read it.
                requisition = replace(requisition, version=requisition.version + 1)
            plan.save(replace(requisition, notes="touched"))

        result = self.runner.run(self.db, tenant_id=TENANT, operation="touch", plan_fn=plan_fn)
        self.assertEqual(attempts, [1, 2])
        self.assertEqual(result.payload["number"], "PO00000001")

        row = self.db.execute(
            "SELECT notes, version FROM requisitions WHERE id = ? AND tenant_id = ?",
            (self.requisition_id, TENANT),
        ).fetchone()
        self.assertEqual(row["notes"], "touched")
        self.assertEqual(int(row["version"]), 2)

    def test_exhausted_retries_raise_and_publish_nothing(self) -> None:
        published = []
        self.bus.subscribe(RequisitionCreated, published.append)
        attempts = []

        def plan_fn(view, plan) -> None:
            attempts.append(1)
            requisition = view.requisition(self.requisition_id)
            plan.emit(RequisitionCreated(tenant_id=TENANT, requisition_id=requisition.id, number=requisition.number))
            plan.save(replace(requisition, version=requisition.version + 10))

        with self.assertRaises(TransactionAbortError):
            self.runner.run(self.db, tenant_id=TENANT, operation="always_stale", plan_fn=plan_fn)
        self.assertEqual(len(attempts), 3)
        self.assertEqual(published, [])

    def test_validation_errors_are_not_retried(self) -> None:
        attempts = []

        def plan_fn(view, plan) -> None:
            attempts.append(1)
            raise ValidationError(code="items_required")

        with self.assertRaises(ValidationError):
            self.runner.run(self.db, tenant_id=TENANT, operation="invalid", plan_fn=plan_fn)
        self.assertEqual(len(attempts), 1)

    def test_events_published_after_commit(self) -> None:
        published = []
        self.bus.subscribe(RequisitionCreated, published.append)

        def plan_fn(view, plan) -> None:
            requisition = view.requisition(self.requisition_id)
            plan.emit(RequisitionCreated(tenant_id=TENANT, requisition_id=requisition.id, number=requisition.number))

        self.runner.run(self.db, tenant_id=TENANT, operation="emit", plan_fn=plan_fn)
        self.assertEqual(len(published), 1)
        self.assertEqual(published[0].tenant_id, TENANT)
        self.assertFalse(self.db.in_transaction)

    def test_tenant_isolation(self) -> None:
        def read_fn(view):
            return view.requisition(self.requisition_id)

        self.assertIsNone(self.runner.read(self.db, tenant_id="tenant-other", read_fn=read_fn))
        self.assertIsNotNone(self.runner.read(self.db, tenant_id=TENANT, read_fn=read_fn))


if __name__ == "__main__":
    unittest.main()

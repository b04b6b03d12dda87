import unittest
from unittest.mock import patch

from sourcing_engine import create_app
from sourcing_engine.config import Config
from sourcing_engine.db import close_db
from sourcing_engine.errors import AppError, UnexpectedError
from sourcing_engine.messages import error_message
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_app(temp_db: TempDbSandbox, **overrides):
    attrs = {"PROPAGATE_EXCEPTIONS": False, "LOG_JSON": False}
    attrs.update(overrides)
    return create_app(temp_db.make_config(Config, **attrs))


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = _build_temp_app(self._temp_db, TESTING=True)
        self.client = self.app.test_client()
        self.tenant_id = "tenant-error-api"
        self.headers = {"X-Tenant-Id": self.tenant_id}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_missing_document_maps_to_not_found(self) -> None:
        response = self.client.get("/api/procurement/requisitions/does-not-exist", headers=self.headers)
        self.assertEqual(response.status_code, 404)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "not_found")
        self.assertEqual(payload.get("message"), error_message("requisition_not_found"))
        self.assertEqual(payload.get("requisition_id"), "does-not-exist")
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertEqual(response.headers.get("X-Request-Id"), payload.get("request_id"))

    def test_validation_error_payload(self) -> None:
        response = self.client.post("/api/procurement/requisitions", json={"lines": []}, headers=self.headers)
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "items_required")
        self.assertEqual(payload.get("message"), error_message("items_required"))

    def test_malformed_number_is_rejected(self) -> None:
        response = self.client.post(
            "/api/procurement/requisitions",
            json={"lines": [{"material_id": "m-1", "quantity": "lots"}]},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "validation_error")
        self.assertEqual(payload.get("field"), "quantity")

    def test_referenced_document_missing_is_conflict(self) -> None:
        response = self.client.post(
            "/api/procurement/purchase-orders",
            json={"vendor_id": "ghost-vendor"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 409)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "referenced_document_missing")
        self.assertEqual(payload.get("message"), error_message("vendor_not_found"))

    def test_unexpected_exception_is_masked(self) -> None:
        with patch(
            "sourcing_engine.routes.procurement_routes.RequisitionService.get_requisition",
            side_effect=RuntimeError("database exploded"),
        ):
            response = self.client.get("/api/procurement/requisitions/any", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        self.assertNotIn("database exploded", response.get_data(as_text=True))
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_unknown_route_keeps_http_status(self) -> None:
        response = self.client.get("/api/procurement/nowhere", headers=self.headers)
        self.assertEqual(response.status_code, 404)

    def test_health_reports_backend_and_metrics(self) -> None:
        self.client.get("/api/procurement/requisitions/missing", headers=self.headers)
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload.get("status"), "ok")
        self.assertEqual(payload.get("db"), "sqlite")
        self.assertIn("metrics", payload)


class UnexpectedErrorTest(unittest.TestCase):
    def test_unexpected_error_is_critical_and_masks_details(self) -> None:
        error = UnexpectedError(details="KeyError: 'vendor'")
        self.assertIsInstance(error, AppError)
        self.assertEqual(error.http_status, 500)
        self.assertTrue(error.critical)
        self.assertFalse(error.retryable)

        body = error.to_response_payload("req-1")
        self.assertEqual(
            body,
            {"error": "unexpected_error", "message": error_message("unexpected_error"), "request_id": "req-1"},
        )
        self.assertNotIn("KeyError", str(body))


if __name__ == "__main__":
    unittest.main()

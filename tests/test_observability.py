import json
import logging
import unittest

from flask import Flask

from mercado_obras import create_app
from mercado_obras.config import Config
from mercado_obras.core import QuotationCreated, get_event_bus, reset_event_bus_for_tests
from mercado_obras.db import close_db
from mercado_obras.observability import (
    JsonLogFormatter,
    bind_request_id,
    ensure_request_id,
    metrics_snapshot,
    reset_metrics_for_tests,
    set_log_request_id,
)
from tests.helpers.temp_db import TempDbSandbox


class ObservabilityMetricsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        self.app = create_app(self._temp_db.make_config(Config, AUTH_ENABLED=False))
        self.client = self.app.test_client()
        reset_metrics_for_tests()
        reset_event_bus_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()
        reset_event_bus_for_tests()

    def test_health_exposes_request_and_event_metrics(self) -> None:
        self.client.get("/api/unknown")
        get_event_bus().publish(QuotationCreated(quotation_id=99, client_id=1, status="sent", items_created=1))

        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers.get("X-Response-Time-Ms"))

        metrics = response.get_json()["metrics"]
        self.assertEqual(metrics["requests_total"], 1)
        self.assertEqual(metrics["errors_total"], 1)
        self.assertEqual(metrics["by_route"][0]["route"], "GET /api/unknown")
        self.assertEqual(metrics["by_route"][0]["errors"], 1)
        self.assertGreaterEqual(metrics["by_route"][0]["max_latency_ms"], metrics["by_route"][0]["avg_latency_ms"])
        self.assertEqual(metrics["domain_events"]["by_type"], {"QuotationCreated": 1})

        reset_metrics_for_tests()
        self.assertEqual(metrics_snapshot()["requests_total"], 0)


class JsonLogFormatterTest(unittest.TestCase):
    def setUp(self) -> None:
        set_log_request_id(None)

    def tearDown(self) -> None:
        set_log_request_id(None)

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("mercado_obras", logging.INFO, __file__, 10, "proposals_expired", (), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_background_records_carry_bound_request_id(self) -> None:
        formatter = JsonLogFormatter()
        with bind_request_id("expiry-abc"):
            payload = json.loads(formatter.format(self._record(count=2)))

        self.assertEqual(payload["message"], "proposals_expired")
        self.assertEqual(payload["level"], "info")
        self.assertEqual(payload["logger"], "mercado_obras")
        self.assertEqual(payload["request_id"], "expiry-abc")
        self.assertEqual(payload["count"], 2)

        outside = json.loads(formatter.format(self._record()))
        self.assertEqual(outside["request_id"], "n/a")

    def test_explicit_request_id_wins_outside_requests(self) -> None:
        payload = json.loads(JsonLogFormatter().format(self._record(request_id="req-1")))
        self.assertEqual(payload["request_id"], "req-1")

    def test_request_scoped_records_use_the_request_header_id(self) -> None:
        app = Flask(__name__)
        with app.test_request_context("/api/cotacoes", headers={"X-Request-Id": "req-42"}):
            self.assertEqual(ensure_request_id(), "req-42")
            payload = json.loads(JsonLogFormatter().format(self._record(request_id="stale")))

        self.assertEqual(payload["request_id"], "req-42")
        self.assertEqual(payload["path"], "/api/cotacoes")
        self.assertEqual(payload["method"], "GET")


if __name__ == "__main__":
    unittest.main()

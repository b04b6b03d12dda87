from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, engine ``extra=`` fields included verbatim."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = str(getattr(g, "request_id", "") or "n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            payload["tenant_id"] = getattr(g, "tenant_id", None)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_") or key in payload:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).strip().upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = getattr(g, "request_id", None)
    if not request_id:
        request_id = (request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
        g.request_id = request_id
    return request_id


@dataclass
class RouteStats:
    requests: int = 0
    errors: int = 0
    latency_sum_ms: float = 0.0
    latency_max_ms: float = 0.0

    def to_payload(self, route: str) -> dict:
        average = self.latency_sum_ms / self.requests if self.requests else 0.0
        return {
            "route": route,
            "requests": self.requests,
            "errors": self.errors,
            "avg_latency_ms": round(average, 2),
            "max_latency_ms": round(self.latency_max_ms, 2),
        }


@dataclass
class OperationStats:
    attempts: int = 0
    retries: int = 0
    aborts: int = 0


class MetricsRegistry:
    """Process-local counters reported by ``/health``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._routes: Dict[str, RouteStats] = {}
        self._operations: Dict[str, OperationStats] = {}
        self._events: Counter = Counter()

    def _operation(self, operation: str) -> OperationStats:
        return self._operations.setdefault(operation or "unknown", OperationStats())

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        duration_ms = max(0.0, float(duration_ms))
        with self._lock:
            stats = self._routes.setdefault(f"{method.upper()} {route}", RouteStats())
            stats.requests += 1
            stats.latency_sum_ms += duration_ms
            stats.latency_max_ms = max(stats.latency_max_ms, duration_ms)
            if status_code >= 400:
                stats.errors += 1

    def observe_transaction(self, operation: str, outcome: str) -> None:
        with self._lock:
            stats = self._operation(operation)
            setattr(stats, outcome, getattr(stats, outcome) + 1)

    def observe_event(self, event_type: str) -> None:
        with self._lock:
            self._events[event_type] += 1

    def snapshot(self) -> dict:
        with self._lock:
            routes = sorted(self._routes.items(), key=lambda pair: pair[1].requests, reverse=True)
            operations = {name: asdict(stats) for name, stats in sorted(self._operations.items())}
            return {
                "requests_total": sum(stats.requests for _, stats in routes),
                "errors_total": sum(stats.errors for _, stats in routes),
                "by_route": [stats.to_payload(route) for route, stats in routes[:40]],
                "transactions": {
                    "attempts_total": sum(stats["attempts"] for stats in operations.values()),
                    "retries_total": sum(stats["retries"] for stats in operations.values()),
                    "aborts_total": sum(stats["aborts"] for stats in operations.values()),
                    "by_operation": operations,
                },
                "domain_events": {
                    "emitted_total": sum(self._events.values()),
                    "by_type": dict(sorted(self._events.items())),
                },
            }


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, response.status_code, elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_transaction_attempt(operation: str) -> None:
    _METRICS.observe_transaction(operation, "attempts")


def observe_transaction_retry(operation: str) -> None:
    _METRICS.observe_transaction(operation, "retries")


def observe_transaction_abort(operation: str) -> None:
    _METRICS.observe_transaction(operation, "aborts")


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_event(event_type)

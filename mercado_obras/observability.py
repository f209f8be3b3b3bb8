from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


# Attributes every LogRecord carries; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("mercado_obras_request_id", default="")


def set_log_request_id(request_id: str | None) -> None:
    _request_id_var.set(str(request_id or "").strip())


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    """Tag every log line emitted inside the block, e.g. one scheduler run."""
    token = _request_id_var.set(str(request_id or "").strip())
    try:
        yield _request_id_var.get()
    finally:
        _request_id_var.reset(token)


def _log_request_id(record: logging.LogRecord) -> str:
    if has_request_context():
        candidates = (getattr(g, "request_id", ""), _request_id_var.get())
    else:
        candidates = (getattr(record, "request_id", ""), _request_id_var.get())
    for candidate in candidates:
        value = str(candidate or "").strip()
        if value:
            return value
    return "n/a"


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": _log_request_id(record),
        }
        if has_request_context():
            payload["method"] = request.method
            payload["path"] = request.path
            actor_id = getattr(g, "actor_id", None)
            if actor_id:
                payload["actor_id"] = actor_id

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_") or key in payload:
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if not request_id:
        request_id = str(request.headers.get("X-Request-Id") or "").strip() or str(uuid.uuid4())
        g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


class MetricsRegistry:
    """In-process counters shown on /health; reset on restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._routes: Dict[str, Dict[str, float]] = {}
        self._events: Counter = Counter()
        self._moderation: Counter = Counter()
        self._notification_failures: Counter = Counter()

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        key = f"{(method or 'GET').upper()} {route or 'unknown'}"
        duration_ms = max(0.0, float(duration_ms))
        with self._lock:
            stats = self._routes.setdefault(key, {"requests": 0, "errors": 0, "latency_sum_ms": 0.0, "latency_max_ms": 0.0})
            stats["requests"] += 1
            stats["latency_sum_ms"] += duration_ms
            stats["latency_max_ms"] = max(stats["latency_max_ms"], duration_ms)
            if int(status_code) >= 400:
                stats["errors"] += 1

    def observe_domain_event_emitted(self, event_type: str) -> None:
        with self._lock:
            self._events[event_type or "unknown"] += 1

    def observe_moderation_blocked(self, reasons) -> None:
        with self._lock:
            self._moderation.update(str(reason) for reason in reasons or ())

    def observe_notification_failed(self, channel: str) -> None:
        with self._lock:
            self._notification_failures[channel or "unknown"] += 1

    def snapshot(self) -> dict:
        with self._lock:
            by_route = [
                {
                    "route": route,
                    "requests": int(stats["requests"]),
                    "errors": int(stats["errors"]),
                    "avg_latency_ms": round(stats["latency_sum_ms"] / stats["requests"], 2),
                    "max_latency_ms": round(stats["latency_max_ms"], 2),
                }
                for route, stats in self._routes.items()
            ]
            by_route.sort(key=lambda item: item["requests"], reverse=True)
            return {
                "requests_total": sum(item["requests"] for item in by_route),
                "errors_total": sum(item["errors"] for item in by_route),
                "by_route": by_route[:40],
                "domain_events": {
                    "emitted_total": sum(self._events.values()),
                    "by_type": dict(sorted(self._events.items())),
                },
                "moderation": {
                    "blocked_total": sum(self._moderation.values()),
                    "by_reason": dict(sorted(self._moderation.items())),
                },
                "notifications": {
                    "failed_total": sum(self._notification_failures.values()),
                    "by_channel": dict(sorted(self._notification_failures.items())),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._routes.clear()
            self._events.clear()
            self._moderation.clear()
            self._notification_failures.clear()


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


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def observe_moderation_blocked(reasons) -> None:
    _METRICS.observe_moderation_blocked(reasons)


def observe_notification_failed(channel: str) -> None:
    _METRICS.observe_notification_failed(channel)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)

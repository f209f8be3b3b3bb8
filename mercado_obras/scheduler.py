from __future__ import annotations

import logging
import os
import threading
import uuid
from datetime import date

from flask import Flask

from mercado_obras.db import close_db, get_db
from mercado_obras.infrastructure.repositories import ProposalRepository, StatusEventRepository
from mercado_obras.observability import bind_request_id


LOGGER = logging.getLogger("mercado_obras")


class ProposalExpiryScheduler:
    """Expires pending proposals whose validity date has passed."""

    def __init__(
        self,
        app: Flask,
        *,
        proposals: ProposalRepository | None = None,
        status_events: StatusEventRepository | None = None,
        today_fn=date.today,
    ) -> None:
        self.app = app
        self.interval_seconds = _int_config(app, "EXPIRY_SCHEDULER_INTERVAL_SECONDS", 900, 30, 86_400)
        self.proposals = proposals or ProposalRepository()
        self.status_events = status_events or StatusEventRepository()
        self.today_fn = today_fn

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="proposal-expiry", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as exc:  # noqa: BLE001 - o loop segue no proximo intervalo
                LOGGER.warning("proposal_expiry_failed", extra={"error": str(exc)[:200]})
            self._stop_event.wait(self.interval_seconds)

    def run_once(self) -> list[dict]:
        with bind_request_id(f"expiry-{uuid.uuid4().hex[:12]}"), self.app.app_context():
            db = get_db()
            try:
                today = self.today_fn().isoformat()
                with db.transaction():
                    expired = self.proposals.expire_overdue(db, today)
                    for row in expired:
                        self.status_events.add_event(
                            db,
                            entity="proposal",
                            entity_id=int(row["id"]),
                            from_status="pending",
                            to_status="expired",
                            reason="validade_vencida",
                        )
                if expired:
                    LOGGER.info(
                        "proposals_expired",
                        extra={"count": len(expired), "proposal_ids": [int(row["id"]) for row in expired]},
                    )
                return expired
            finally:
                close_db()


def start_expiry_scheduler(app: Flask) -> ProposalExpiryScheduler | None:
    if not _should_start_scheduler(app):
        return None
    scheduler = ProposalExpiryScheduler(app)
    scheduler.start()
    app.extensions["expiry_scheduler"] = scheduler
    app.logger.info("Proposal expiry scheduler started: interval=%ss", scheduler.interval_seconds)
    return scheduler


def _should_start_scheduler(app: Flask) -> bool:
    if not app.config.get("EXPIRY_SCHEDULER_ENABLED", False):
        return False
    if app.config.get("TESTING"):
        return False
    if app.debug:
        run_main = os.environ.get("WERKZEUG_RUN_MAIN")
        if run_main and run_main.lower() != "true":
            return False
    return True


def _int_config(app: Flask, key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))

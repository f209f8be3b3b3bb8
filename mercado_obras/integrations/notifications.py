from __future__ import annotations

import logging
from typing import Callable

from mercado_obras.infrastructure.repositories import NotificationRepository
from mercado_obras.integrations.retry import call_with_retry
from mercado_obras.observability import observe_notification_failed


logger = logging.getLogger("mercado_obras")


class Notifier:
    """In-app notifications persisted for the recipient. Never fails the caller."""

    def __init__(
        self,
        repository: NotificationRepository | None = None,
        *,
        attempts: int = 2,
        backoff_ms: int = 200,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self.repository = repository or NotificationRepository()
        self.attempts = attempts
        self.backoff_ms = backoff_ms
        self.sleep_fn = sleep_fn

    @classmethod
    def from_config(cls, config) -> "Notifier":
        return cls(
            attempts=int(config.get("NOTIFY_RETRY_ATTEMPTS", 2)),
            backoff_ms=int(config.get("NOTIFY_RETRY_BACKOFF_MS", 200)),
        )

    def notify(self, db, *, recipient_id: int | None, title: str, message: str, link: str | None = None) -> bool:
        if not recipient_id:
            return False

        def _create() -> int:
            return self.repository.create(db, user_id=int(recipient_id), title=title, message=message, link=link)

        kwargs = {"attempts": self.attempts, "backoff_ms": self.backoff_ms, "label": "notification"}
        if self.sleep_fn is not None:
            kwargs["sleep_fn"] = self.sleep_fn
        try:
            call_with_retry(_create, **kwargs)
        except Exception as exc:  # noqa: BLE001
            observe_notification_failed("in_app")
            logger.warning(
                "notification_failed",
                extra={"recipient_id": recipient_id, "title": title, "error": str(exc)},
            )
            return False
        return True

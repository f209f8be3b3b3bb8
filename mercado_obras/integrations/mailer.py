from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from flask_mail import Mail, Message


logger = logging.getLogger("mercado_obras")

mail = Mail()


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class EmailSender:
    """Best-effort e-mail delivery.

    ``log`` writes the message to the application log (default for dev/tests);
    ``smtp`` hands it to Flask-Mail using the ``MAIL_*`` settings.
    """

    def __init__(self, backend: str = "log", sender: str | None = None, mailer: Mail | None = None) -> None:
        self.backend = (backend or "log").strip().lower()
        self.sender = sender
        self.mailer = mailer or mail

    @classmethod
    def from_config(cls, config) -> "EmailSender":
        return cls(backend=config.get("EMAIL_BACKEND", "log"), sender=config.get("MAIL_DEFAULT_SENDER"))

    def send_email(self, to: str | None, subject: str, html: str) -> EmailResult:
        recipient = (to or "").strip()
        if not recipient:
            return EmailResult(success=False, error="recipient_missing")

        message_id = uuid.uuid4().hex
        if self.backend == "log":
            logger.info(
                "email_logged",
                extra={"to": recipient, "subject": subject, "message_id": message_id},
            )
            return EmailResult(success=True, message_id=message_id)

        if self.backend != "smtp":
            return EmailResult(success=False, error=f"backend_unsupported:{self.backend}")

        try:
            msg = Message(subject, recipients=[recipient], html=html, sender=self.sender)
            msg.msgId = f"<{message_id}@mercadoobras>"
            self.mailer.send(msg)
        except Exception as exc:  # noqa: BLE001
            logger.warning("email_failed", extra={"to": recipient, "subject": subject, "error": str(exc)})
            return EmailResult(success=False, error=str(exc))
        return EmailResult(success=True, message_id=message_id)

from __future__ import annotations

from typing import Any, Dict

from flask import current_app, jsonify, request

from mercado_obras.application.chat_service import ChatService
from mercado_obras.application.order_service import OrderService
from mercado_obras.application.quotation_service import QuotationService
from mercado_obras.domain.contracts import ServiceOutput
from mercado_obras.errors import ValidationError
from mercado_obras.integrations.mailer import EmailSender
from mercado_obras.integrations.notifications import Notifier
from mercado_obras.integrations.storage import LocalFileStorage
from mercado_obras.ui_strings import success_message


def quotation_service() -> QuotationService:
    config = current_app.config
    return QuotationService(notifier=Notifier.from_config(config), email_sender=EmailSender.from_config(config))


def order_service() -> OrderService:
    config = current_app.config
    return OrderService(
        storage=LocalFileStorage.from_config(config),
        notifier=Notifier.from_config(config),
        email_sender=EmailSender.from_config(config),
        max_attachment_bytes=int(config.get("MAX_ATTACHMENT_BYTES", 10 * 1024 * 1024)),
    )


def chat_service() -> ChatService:
    config = current_app.config
    return ChatService(
        notifier=Notifier.from_config(config),
        max_message_length=int(config.get("CHAT_MAX_MESSAGE_LENGTH", 2000)),
        poll_interval_seconds=int(config.get("CHAT_POLL_INTERVAL_SECONDS", 5)),
        feeds=current_app.extensions.get("chat_feeds"),
    )


def json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def parse_int(value, *, default: int | None = None, min_value: int | None = None, max_value: int | None = None):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if min_value is not None and parsed < min_value:
        parsed = min_value
    if max_value is not None and parsed > max_value:
        parsed = max_value
    return parsed


def require_int(value, field: str) -> int:
    parsed = parse_int(value)
    if parsed is None or parsed <= 0:
        raise ValidationError(payload={"field": field})
    return parsed


def respond(result: ServiceOutput, success_key: str | None = None):
    payload = dict(result.payload or {})
    if success_key and 200 <= int(result.status_code) < 300:
        payload.setdefault("message", success_message(success_key))
    return jsonify(payload), result.status_code

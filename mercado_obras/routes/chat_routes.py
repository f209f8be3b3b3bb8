from __future__ import annotations

from flask import Blueprint, jsonify, request, session

from mercado_obras.db import get_db
from mercado_obras.domain.contracts import ChatMessageInput
from mercado_obras.policies import current_actor
from mercado_obras.procurement.chat_rooms import ConversationRegistry
from mercado_obras.routes.common import chat_service, json_payload, parse_int, require_int, respond


chat_bp = Blueprint("chat", __name__)


@chat_bp.route("/api/chat/messages", methods=["GET", "POST"])
def chat_messages_api():
    actor = current_actor()
    db = get_db()
    if request.method == "POST":
        payload = json_payload()
        result = chat_service().post_message(
            db,
            ChatMessageInput(
                sender_id=actor.id,
                content=str(payload.get("content") or payload.get("text") or ""),
                room_key=str(payload.get("room_key") or ""),
            ),
        )
        # Blocked attempts are audited, so they are committed as well.
        db.commit()
        return respond(result, "message_sent")

    return respond(
        chat_service().list_messages(
            db,
            user_id=actor.id,
            room_key=request.args.get("room_key") or "",
            after_id=parse_int(request.args.get("after_id"), default=0, min_value=0),
        )
    )


@chat_bp.route("/api/chat/rooms", methods=["GET"])
def chat_rooms_api():
    actor = current_actor()
    counterparty_id = require_int(request.args.get("counterparty_id"), "counterparty_id")
    return respond(chat_service().list_rooms(get_db(), user_id=actor.id, counterparty_id=counterparty_id))


@chat_bp.route("/api/chat/notification", methods=["GET"])
def chat_notification_api():
    actor = current_actor()
    return respond(
        chat_service().resolve_notification(
            get_db(),
            user_id=actor.id,
            room_key=request.args.get("room_key") or "",
            sender_id=parse_int(request.args.get("sender_id")),
        )
    )


@chat_bp.route("/api/chat/conversations", methods=["GET", "POST"])
def chat_conversations_api():
    actor = current_actor()
    registry = ConversationRegistry(session)
    if request.method == "POST":
        payload = json_payload()
        room_key = str(payload.get("room_key") or "")
        resolved = chat_service().resolve_notification(
            get_db(),
            user_id=actor.id,
            room_key=room_key,
            sender_id=parse_int(payload.get("counterparty_id")),
        ).payload
        opened = registry.open_room(resolved["counterparty_id"], resolved["room_key"])
        return (
            jsonify(
                {
                    "opened": opened,
                    "counterparty_id": resolved["counterparty_id"],
                    "room_key": resolved["room_key"],
                    "conversations": _conversation_list(registry),
                }
            ),
            201 if opened else 200,
        )

    return jsonify({"conversations": _conversation_list(registry)})


@chat_bp.route("/api/chat/conversations/<int:counterparty_id>", methods=["DELETE"])
def chat_conversation_close_api(counterparty_id: int):
    current_actor()
    registry = ConversationRegistry(session)
    registry.close_room(counterparty_id)
    return jsonify({"conversations": _conversation_list(registry)})


def _conversation_list(registry: ConversationRegistry) -> list[dict]:
    return [
        {"counterparty_id": counterparty_id, "room_key": room_key}
        for counterparty_id, room_key in sorted(registry.open_rooms().items())
    ]

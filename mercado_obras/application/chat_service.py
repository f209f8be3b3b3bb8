from __future__ import annotations

import logging
from collections import OrderedDict
from threading import RLock
from typing import Any, Dict, List
from urllib.parse import urlencode

from mercado_obras.core import ChatMessageBlocked, ChatMessagePosted, EventBus, get_event_bus
from mercado_obras.domain.contracts import ChatMessageInput, ServiceOutput
from mercado_obras.errors import ForbiddenError, NotFoundError, ValidationError
from mercado_obras.infrastructure.repositories import (
    AuditRepository,
    MessageRepository,
    OrderRepository,
    ProposalRepository,
    QuotationRepository,
    SupplierRepository,
    UserRepository,
)
from mercado_obras.integrations.notifications import Notifier
from mercado_obras.observability import observe_moderation_blocked
from mercado_obras.procurement.chat_rooms import (
    SCOPE_ORDER,
    SCOPE_QUOTATION,
    ConversationFeed,
    parse_room_key,
    room_key_for_order,
    room_key_for_quotation,
)
from mercado_obras.procurement.moderation import analyze
from mercado_obras.ui_strings import error_message, moderation_reason_labels, role_label


logger = logging.getLogger("mercado_obras")

DEFAULT_MAX_MESSAGE_LENGTH = 2000
AUDIT_PREVIEW_LENGTH = 160
FEED_MAX_ROOMS = 500
FEED_MAX_MESSAGES = 200


class RoomFeeds:
    """Per-room ``ConversationFeed`` shared by the realtime subscriber and the polling reads."""

    def __init__(self, max_rooms: int = FEED_MAX_ROOMS, max_messages: int = FEED_MAX_MESSAGES) -> None:
        self._lock = RLock()
        self._feeds: OrderedDict[str, ConversationFeed] = OrderedDict()
        self._max_rooms = int(max_rooms)
        self._max_messages = int(max_messages)

    def register_event_handlers(self, event_bus: EventBus) -> RoomFeeds:
        event_bus.subscribe(ChatMessagePosted, self._on_message_posted)
        return self

    def _on_message_posted(self, event: ChatMessagePosted) -> None:
        if event.message:
            self.merge(event.room_key, [event.message])

    def _feed(self, room_key: str) -> ConversationFeed:
        feed = self._feeds.get(room_key)
        if feed is None:
            feed = ConversationFeed(limit=self._max_messages)
            self._feeds[room_key] = feed
            while len(self._feeds) > self._max_rooms:
                self._feeds.popitem(last=False)
        self._feeds.move_to_end(room_key)
        return feed

    def merge(self, room_key: str, messages) -> List[Dict[str, Any]]:
        with self._lock:
            return self._feed(room_key).merge(messages)

    def messages_after(self, room_key: str, after_id: int = 0) -> List[Dict[str, Any]]:
        with self._lock:
            feed = self._feeds.get(room_key)
            if feed is None:
                return []
            return [dict(entry) for entry in feed.messages() if int(entry["id"]) > int(after_id or 0)]


class ChatService:
    """Moderated, anonymised client <-> supplier conversations."""

    def __init__(
        self,
        messages: MessageRepository | None = None,
        quotations: QuotationRepository | None = None,
        proposals: ProposalRepository | None = None,
        orders: OrderRepository | None = None,
        suppliers: SupplierRepository | None = None,
        users: UserRepository | None = None,
        audit: AuditRepository | None = None,
        notifier: Notifier | None = None,
        event_bus: EventBus | None = None,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        poll_interval_seconds: int = 5,
        feeds: RoomFeeds | None = None,
    ) -> None:
        self.messages = messages or MessageRepository()
        self.quotations = quotations or QuotationRepository()
        self.proposals = proposals or ProposalRepository()
        self.orders = orders or OrderRepository()
        self.suppliers = suppliers or SupplierRepository()
        self.users = users or UserRepository()
        self.audit = audit or AuditRepository()
        self.notifier = notifier or Notifier()
        self.event_bus = event_bus or get_event_bus()
        self.max_message_length = int(max_message_length)
        self.poll_interval_seconds = int(poll_interval_seconds)
        self.feeds = feeds if feeds is not None else RoomFeeds()

    # ------------------------------------------------------------------
    # room resolution
    # ------------------------------------------------------------------

    def _room_context(self, db, raw_room_key: str | None) -> Dict[str, Any]:
        key = parse_room_key(raw_room_key)
        if key.scope == SCOPE_ORDER:
            order = self.orders.get_by_id(db, key.order_id)
            if not order:
                raise NotFoundError("order_not_found", payload={"room_key": str(key)})
            return {
                "room_key": str(key),
                "scope": SCOPE_ORDER,
                "quotation_id": order["quotation_id"],
                "order_id": order["id"],
                "client_id": int(order["client_id"]),
                "supplier_id": int(order["supplier_id"]),
                "supplier_user_id": int(order["supplier_user_id"]),
                "supplier_name": order.get("supplier_name"),
                "title": f"Pedido #{order.get('number')}",
            }

        quotation = self.quotations.get_by_id(db, key.quotation_id)
        supplier = self.suppliers.get_by_id(db, key.supplier_id)
        if not quotation or not supplier:
            raise NotFoundError(payload={"room_key": str(key)})
        # Quotation rooms only exist once the supplier has quoted.
        if not self.proposals.get_for_supplier(db, key.quotation_id, key.supplier_id):
            raise ForbiddenError("chat_access_denied", payload={"room_key": str(key)})
        return {
            "room_key": str(key),
            "scope": SCOPE_QUOTATION,
            "quotation_id": int(quotation["id"]),
            "order_id": None,
            "client_id": int(quotation["client_id"]),
            "supplier_id": int(supplier["id"]),
            "supplier_user_id": int(supplier["user_id"]),
            "supplier_name": supplier.get("name"),
            "title": f"Cotacao #{quotation.get('number')}",
        }

    def _require_participant(self, context: Dict[str, Any], user_id: int) -> None:
        if int(user_id) not in (context["client_id"], context["supplier_user_id"]):
            raise ForbiddenError("chat_access_denied", payload={"room_key": context["room_key"]})

    @staticmethod
    def _other_participant(context: Dict[str, Any], user_id: int) -> int:
        if int(user_id) == context["client_id"]:
            return context["supplier_user_id"]
        return context["client_id"]

    def _effective_context(self, db, context: Dict[str, Any]) -> Dict[str, Any]:
        """Quotation rooms move to the order room once that pair has an order."""
        if context["scope"] != SCOPE_QUOTATION:
            return context
        order = self.orders.find_for_supplier(db, context["quotation_id"], context["supplier_id"])
        if not order:
            return context
        return self._room_context(db, room_key_for_order(order["id"]))

    def display_name(self, db, context: Dict[str, Any], viewer_id: int) -> str:
        """How the other participant is shown to ``viewer_id``."""
        viewer_is_client = int(viewer_id) == context["client_id"]
        if context["scope"] == SCOPE_QUOTATION:
            return role_label("supplier" if viewer_is_client else "client")
        if viewer_is_client:
            return str(context.get("supplier_name") or role_label("supplier"))
        client = self.users.get_by_id(db, context["client_id"]) or {}
        return str(client.get("company_name") or client.get("name") or role_label("client"))

    def _notification_link(self, db, context: Dict[str, Any], recipient_id: int, sender_id: int) -> str:
        recipient = self.users.get_by_id(db, recipient_id) or {}
        params = {"chatRoom": context["room_key"], "senderId": sender_id}
        if context["scope"] == SCOPE_QUOTATION:
            params["cotacaoId"] = context["quotation_id"]
        else:
            params["pedidoId"] = context["order_id"]

        if recipient.get("role") == "supplier":
            params["tab"] = "vendas-cotacoes" if context["scope"] == SCOPE_QUOTATION else "vendas-pedidos"
            return f"/dashboard/fornecedor?{urlencode(params)}"
        if recipient.get("role") == "client":
            params["tab"] = "cotacoes" if context["scope"] == SCOPE_QUOTATION else "pedidos"
            return f"/dashboard/cliente?{urlencode(params)}"
        return "/dashboard"

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def post_message(self, db, message_input: ChatMessageInput) -> ServiceOutput:
        content = str(message_input.content or "").strip()
        if not content:
            raise ValidationError("content_required")
        if len(content) > self.max_message_length:
            raise ValidationError("content_too_long", payload={"max_length": self.max_message_length})

        requested = self._room_context(db, message_input.room_key)
        self._require_participant(requested, message_input.sender_id)
        context = self._effective_context(db, requested)

        moderation = analyze(content)
        if moderation.blocked:
            return self._blocked(db, context, message_input.sender_id, content, moderation.reasons)

        message = self.messages.create(
            db,
            room_key=context["room_key"],
            sender_id=message_input.sender_id,
            content=content,
            client_id=context["client_id"],
            supplier_id=context["supplier_id"],
            quotation_id=context["quotation_id"],
            order_id=context["order_id"],
        )

        recipient_id = self._other_participant(context, message_input.sender_id)
        sender_name = self.display_name(db, context, recipient_id)
        self.notifier.notify(
            db,
            recipient_id=recipient_id,
            title="Nova mensagem no chat",
            message=f"Nova mensagem de {sender_name} em {context['title']}.",
            link=self._notification_link(db, context, recipient_id, message_input.sender_id),
        )
        self.event_bus.publish(
            ChatMessagePosted(
                actor_id=message_input.sender_id,
                message_id=int(message["id"]),
                room_key=context["room_key"],
                sender_id=message_input.sender_id,
                recipient_id=recipient_id,
                message=dict(message),
            )
        )
        return ServiceOutput(
            payload={
                "message": message,
                "room_key": context["room_key"],
                "redirected": context["room_key"] != requested["room_key"],
            },
            status_code=201,
        )

    def _blocked(self, db, context: Dict[str, Any], sender_id: int, content: str, reasons) -> ServiceOutput:
        self.audit.record(
            db,
            user_id=sender_id,
            action="CHAT_MESSAGE_BLOCKED",
            details={
                "room_key": context["room_key"],
                "reasons": list(reasons),
                "content_preview": content[:AUDIT_PREVIEW_LENGTH],
            },
        )
        observe_moderation_blocked(reasons)
        logger.info(
            "chat_message_blocked",
            extra={"room_key": context["room_key"], "sender_id": sender_id, "reasons": list(reasons)},
        )
        self.event_bus.publish(
            ChatMessageBlocked(
                actor_id=sender_id,
                room_key=context["room_key"],
                sender_id=sender_id,
                reasons=tuple(reasons),
            )
        )
        return ServiceOutput(
            payload={
                "error": "message_blocked",
                "message": error_message("message_blocked"),
                "blocked": True,
                "reasons": list(reasons),
                "reason_labels": moderation_reason_labels(reasons),
                "room_key": context["room_key"],
            },
            status_code=422,
        )

    def list_messages(self, db, *, user_id: int, room_key: str, after_id: int = 0) -> ServiceOutput:
        context = self._room_context(db, room_key)
        self._require_participant(context, user_id)
        polled = self.messages.list_for_room(db, context["room_key"], after_id=after_id)
        self.feeds.merge(context["room_key"], polled)
        by_id = {int(entry["id"]): entry for entry in self.feeds.messages_after(context["room_key"], after_id)}
        by_id.update((int(row["id"]), row) for row in polled)
        rows = [dict(by_id[message_id]) for message_id in sorted(by_id)]
        for row in rows:
            row["own"] = int(row["sender_id"]) == int(user_id)
        return ServiceOutput(
            payload={
                "room_key": context["room_key"],
                "title": context["title"],
                "counterpart_name": self.display_name(db, context, user_id),
                "items": rows,
                "last_id": rows[-1]["id"] if rows else int(after_id or 0),
                "poll_interval_seconds": self.poll_interval_seconds,
            },
            status_code=200,
        )

    def _pair(self, db, user_id: int, counterparty_id: int) -> tuple[int, int] | None:
        """(client user id, supplier id) for two users, in whatever order they were given."""
        first = self.users.get_by_id(db, user_id) or {}
        second = self.users.get_by_id(db, counterparty_id) or {}
        if first.get("role") == "client" and second.get("supplier_id"):
            return int(first["id"]), int(second["supplier_id"])
        if second.get("role") == "client" and first.get("supplier_id"):
            return int(second["id"]), int(first["supplier_id"])
        return None

    def list_rooms(self, db, *, user_id: int, counterparty_id: int) -> ServiceOutput:
        pair = self._pair(db, user_id, counterparty_id)
        if pair is None:
            return ServiceOutput(payload={"rooms": []}, status_code=200)
        client_id, supplier_id = pair

        rooms: Dict[str, Dict[str, Any]] = {}
        for proposal in self.proposals.list_between(db, client_id=client_id, supplier_id=supplier_id):
            key = room_key_for_quotation(proposal["quotation_id"], supplier_id)
            rooms[key] = {
                "room_key": key,
                "scope": SCOPE_QUOTATION,
                "title": f"Cotacao #{proposal.get('quotation_number')}",
            }
        for order in self.orders.list_between(db, client_id=client_id, supplier_id=supplier_id):
            key = room_key_for_order(order["id"])
            rooms[key] = {"room_key": key, "scope": SCOPE_ORDER, "title": f"Pedido #{order.get('number')}"}

        last_messages = self.messages.last_messages(db, rooms.keys())
        entries: List[Dict[str, Any]] = []
        for key, room in rooms.items():
            last = last_messages.get(key)
            room["last_message"] = last.get("content") if last else ""
            room["last_message_at"] = last.get("created_at") if last else None
            room["last_message_id"] = int(last["id"]) if last else 0
            room["unread_count"] = 0
            entries.append(room)

        # Message ids grow monotonically, so they order rooms by recency.
        entries.sort(key=lambda room: room["last_message_id"], reverse=True)
        return ServiceOutput(payload={"rooms": entries}, status_code=200)

    def resolve_notification(
        self, db, *, user_id: int, room_key: str, sender_id: int | None = None
    ) -> ServiceOutput:
        """Finds who a chat notification should open a conversation with."""
        context = self._room_context(db, room_key)
        self._require_participant(context, user_id)
        participants = {context["client_id"], context["supplier_user_id"]}

        counterparty_id = None
        if sender_id and int(sender_id) != int(user_id) and int(sender_id) in participants:
            counterparty_id = int(sender_id)
        if counterparty_id is None:
            latest = self.messages.latest_from_other(db, context["room_key"], user_id)
            if latest:
                counterparty_id = int(latest["sender_id"])
        if counterparty_id is None:
            counterparty_id = self._other_participant(context, user_id)

        return ServiceOutput(
            payload={
                "room_key": context["room_key"],
                "scope": context["scope"],
                "title": context["title"],
                "counterparty_id": counterparty_id,
                "counterparty_name": self.display_name(db, context, user_id),
            },
            status_code=200,
        )

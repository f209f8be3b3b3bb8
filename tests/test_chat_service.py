import unittest

from mercado_obras import create_app
from mercado_obras.application.chat_service import ChatService, RoomFeeds
from mercado_obras.application.order_service import OrderService
from mercado_obras.config import Config
from mercado_obras.core import ChatMessageBlocked, ChatMessagePosted, EventBus
from mercado_obras.db import close_db, get_db
from mercado_obras.domain.contracts import ChatMessageInput, FinalizeOrderInput
from mercado_obras.errors import ForbiddenError, ValidationError
from mercado_obras.infrastructure.repositories import AuditRepository, MessageRepository, NotificationRepository
from mercado_obras.observability import metrics_snapshot
from mercado_obras.procurement.chat_rooms import room_key_for_order, room_key_for_quotation
from tests.helpers.marketplace import quote_cement_and_sand, seed_marketplace
from tests.helpers.temp_db import TempDbSandbox


class ChatServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="chat_service")
        self.app = create_app(self._temp_db.make_config(Config))
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.db = get_db()
        self.seed = seed_marketplace(self.db)
        self.quotation_id, self.cement_id, self.sand_id = quote_cement_and_sand(self.db, self.seed)

        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(ChatMessagePosted, self.events.append)
        self.bus.subscribe(ChatMessageBlocked, self.events.append)
        self.service = ChatService(event_bus=self.bus, max_message_length=200)
        self.room_a = room_key_for_quotation(self.quotation_id, self.seed.supplier_a_id)

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _post(self, sender_id: int, content: str, room_key: str | None = None):
        result = self.service.post_message(
            self.db, ChatMessageInput(sender_id=sender_id, content=content, room_key=room_key or self.room_a)
        )
        self.db.commit()
        return result

    def _finalize_sand_with_a(self) -> int:
        result = OrderService(event_bus=self.bus).finalize_order(
            self.db,
            FinalizeOrderInput(
                quotation_id=self.quotation_id,
                client_id=self.seed.client_id,
                selections={self.sand_id: self.seed.supplier_a_id},
            ),
        )
        self.db.commit()
        return int(result.payload["orders"][0]["id"])

    def test_pushed_and_polled_messages_share_one_feed(self) -> None:
        feeds = RoomFeeds().register_event_handlers(self.bus)
        service = ChatService(event_bus=self.bus, feeds=feeds)

        sent = service.post_message(
            self.db, ChatMessageInput(sender_id=self.seed.client_id, content="Tem entrega no sabado?", room_key=self.room_a)
        )
        self.db.commit()
        message_id = sent.payload["message"]["id"]
        self.assertEqual([entry["id"] for entry in feeds.messages_after(self.room_a)], [message_id])

        # Delivered by the realtime path only, not yet visible to the polling read.
        self.bus.publish(
            ChatMessagePosted(
                message_id=message_id + 50,
                room_key=self.room_a,
                sender_id=self.seed.supplier_a_user_id,
                message={
                    "id": message_id + 50,
                    "room_key": self.room_a,
                    "sender_id": self.seed.supplier_a_user_id,
                    "content": "Temos sim.",
                    "created_at": None,
                },
            )
        )

        items = service.list_messages(self.db, user_id=self.seed.client_id, room_key=self.room_a).payload["items"]
        self.assertEqual([row["id"] for row in items], [message_id, message_id + 50])
        self.assertEqual([row["own"] for row in items], [True, False])

        again = service.list_messages(self.db, user_id=self.seed.client_id, room_key=self.room_a).payload["items"]
        self.assertEqual(len(again), 2)

    def test_app_registers_shared_room_feeds(self) -> None:
        self.assertIsInstance(self.app.extensions["chat_feeds"], RoomFeeds)

    def test_participants_exchange_messages(self) -> None:
        sent = self._post(self.seed.client_id, "Consegue entregar na segunda-feira?")
        self.assertEqual(sent.status_code, 201)
        self.assertEqual(sent.payload["room_key"], self.room_a)
        self.assertFalse(sent.payload["redirected"])
        self._post(self.seed.supplier_a_user_id, "Sim, pela manha.")

        feed = self.service.list_messages(self.db, user_id=self.seed.client_id, room_key=self.room_a).payload
        self.assertEqual([row["own"] for row in feed["items"]], [True, False])
        self.assertEqual(feed["counterpart_name"], "Fornecedor")
        self.assertEqual(feed["last_id"], feed["items"][-1]["id"])

        newer = self.service.list_messages(
            self.db, user_id=self.seed.supplier_a_user_id, room_key=self.room_a, after_id=feed["items"][0]["id"]
        ).payload
        self.assertEqual([row["content"] for row in newer["items"]], ["Sim, pela manha."])
        self.assertEqual(newer["counterpart_name"], "Cliente")

        links = [note["link"] for note in NotificationRepository().list_for_user(self.db, self.seed.supplier_a_user_id)]
        self.assertTrue(any("chatRoom=" in link and "tab=vendas-cotacoes" in link for link in links if link))
        self.assertEqual(len(self.events), 2)

    def test_room_requires_a_proposal_and_participation(self) -> None:
        with self.assertRaises(ForbiddenError) as ctx:
            self._post(self.seed.client_id, "Oi", room_key_for_quotation(self.quotation_id, self.seed.supplier_rj_id))
        self.assertEqual(ctx.exception.code, "chat_access_denied")

        with self.assertRaises(ForbiddenError):
            self._post(self.seed.other_client_id, "Oi")
        with self.assertRaises(ForbiddenError):
            self._post(self.seed.supplier_b_user_id, "Oi")
        with self.assertRaises(ValidationError):
            self._post(self.seed.client_id, "Oi", "abc")

    def test_content_limits(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self._post(self.seed.client_id, "   ")
        self.assertEqual(ctx.exception.code, "content_required")

        with self.assertRaises(ValidationError) as ctx:
            self._post(self.seed.client_id, "x" * 201)
        self.assertEqual(ctx.exception.code, "content_too_long")

    def test_blocked_message_is_audited_not_stored(self) -> None:
        before = metrics_snapshot()["moderation"]["by_reason"].get("email", 0)
        result = self._post(self.seed.supplier_a_user_id, "Manda para joao.silva@deposito.com.br que eu respondo")

        self.assertEqual(result.status_code, 422)
        self.assertTrue(result.payload["blocked"])
        self.assertIn("email", result.payload["reasons"])
        self.assertEqual(MessageRepository().list_for_room(self.db, self.room_a), [])

        audit = AuditRepository().list_by_action(self.db, "CHAT_MESSAGE_BLOCKED")
        self.assertEqual(len(audit), 1)
        self.assertEqual(audit[0]["user_id"], self.seed.supplier_a_user_id)
        self.assertEqual(audit[0]["details"]["room_key"], self.room_a)
        self.assertEqual(metrics_snapshot()["moderation"]["by_reason"]["email"], before + 1)
        client_titles = [note["title"] for note in NotificationRepository().list_for_user(self.db, self.seed.client_id)]
        self.assertNotIn("Nova mensagem no chat", client_titles)
        self.assertIsInstance(self.events[-1], ChatMessageBlocked)

    def test_quotation_room_redirects_to_order_room(self) -> None:
        self._post(self.seed.client_id, "Vamos fechar a areia com voces.")
        order_id = self._finalize_sand_with_a()

        result = self._post(self.seed.supplier_a_user_id, "Pedido recebido, obrigado.")
        self.assertTrue(result.payload["redirected"])
        self.assertEqual(result.payload["room_key"], room_key_for_order(order_id))

        order_feed = self.service.list_messages(
            self.db, user_id=self.seed.client_id, room_key=room_key_for_order(order_id)
        ).payload
        self.assertEqual([row["content"] for row in order_feed["items"]], ["Pedido recebido, obrigado."])
        self.assertEqual(order_feed["counterpart_name"], "Deposito A")

        # B lost the item it quoted, so its room stays a quotation room.
        room_b = room_key_for_quotation(self.quotation_id, self.seed.supplier_b_id)
        self.assertFalse(self._post(self.seed.supplier_b_user_id, "Fico a disposicao.", room_b).payload["redirected"])

    def test_rooms_between_a_pair_are_ordered_by_last_message(self) -> None:
        empty = self.service.list_rooms(
            self.db, user_id=self.seed.client_id, counterparty_id=self.seed.supplier_a_user_id
        ).payload["rooms"]
        self.assertEqual([room["room_key"] for room in empty], [self.room_a])
        self.assertEqual(empty[0]["last_message"], "")

        self._post(self.seed.client_id, "Primeira mensagem")
        order_id = self._finalize_sand_with_a()
        order_room = room_key_for_order(order_id)
        self._post(self.seed.client_id, "Sobre o pedido", order_room)

        rooms = self.service.list_rooms(
            self.db, user_id=self.seed.supplier_a_user_id, counterparty_id=self.seed.client_id
        ).payload["rooms"]
        self.assertEqual([room["room_key"] for room in rooms], [order_room, self.room_a])
        self.assertEqual(rooms[0]["last_message"], "Sobre o pedido")

        unrelated = self.service.list_rooms(
            self.db, user_id=self.seed.client_id, counterparty_id=self.seed.other_client_id
        ).payload["rooms"]
        self.assertEqual(unrelated, [])

    def test_resolve_notification_counterparty(self) -> None:
        resolved = self.service.resolve_notification(
            self.db, user_id=self.seed.supplier_a_user_id, room_key=self.room_a, sender_id=self.seed.client_id
        ).payload
        self.assertEqual(resolved["counterparty_id"], self.seed.client_id)
        self.assertEqual(resolved["counterparty_name"], "Cliente")

        # Unknown sender falls back to the other participant.
        fallback = self.service.resolve_notification(
            self.db, user_id=self.seed.client_id, room_key=self.room_a, sender_id=self.seed.other_client_id
        ).payload
        self.assertEqual(fallback["counterparty_id"], self.seed.supplier_a_user_id)

        with self.assertRaises(ForbiddenError):
            self.service.resolve_notification(self.db, user_id=self.seed.other_client_id, room_key=self.room_a)


if __name__ == "__main__":
    unittest.main()

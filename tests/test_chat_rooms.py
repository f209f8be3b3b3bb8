import unittest

from mercado_obras.errors import ValidationError
from mercado_obras.procurement.chat_rooms import (
    SCOPE_ORDER,
    SCOPE_QUOTATION,
    ConversationFeed,
    ConversationRegistry,
    parse_room_key,
    room_key_for_order,
    room_key_for_quotation,
)


class RoomKeyTest(unittest.TestCase):
    def test_quotation_and_order_keys(self) -> None:
        self.assertEqual(room_key_for_quotation(12, 4), "12::4")
        self.assertEqual(room_key_for_order(31), "31")

        key = parse_room_key(" 12::4 ")
        self.assertEqual((key.quotation_id, key.supplier_id, key.scope), (12, 4, SCOPE_QUOTATION))
        self.assertEqual(str(key), "12::4")

        order_key = parse_room_key("31")
        self.assertEqual((order_key.order_id, order_key.scope), (31, SCOPE_ORDER))

    def test_invalid_keys(self) -> None:
        for raw in (None, "", "abc", "12::", "::4", "0", "-3", "5::0"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError):
                    parse_room_key(raw)


class ConversationFeedTest(unittest.TestCase):
    def test_realtime_and_polling_deliveries_are_merged_once(self) -> None:
        feed = ConversationFeed([{"id": 1, "content": "oi"}])
        realtime = feed.merge([{"id": 3, "content": "tudo certo"}])
        polled = feed.merge([{"id": 2, "content": "bom dia"}, {"id": 3, "content": "tudo certo"}])

        self.assertEqual([entry["id"] for entry in realtime], [3])
        self.assertEqual([entry["id"] for entry in polled], [2])
        self.assertEqual([entry["id"] for entry in feed.messages()], [1, 2, 3])
        self.assertEqual(feed.last_id, 3)
        self.assertEqual(len(feed), 3)

    def test_limit_keeps_the_newest_messages(self) -> None:
        feed = ConversationFeed([{"id": 1}, {"id": 2}], limit=2)
        feed.merge([{"id": 3}])

        self.assertEqual([entry["id"] for entry in feed.messages()], [2, 3])
        self.assertEqual(feed.merge([{"id": 3}]), [])

    def test_empty_feed(self) -> None:
        feed = ConversationFeed()
        self.assertEqual(feed.last_id, 0)
        self.assertEqual(feed.merge(None), [])


class ConversationRegistryTest(unittest.TestCase):
    def test_one_surface_per_counterparty(self) -> None:
        storage = {}
        registry = ConversationRegistry(storage)

        self.assertTrue(registry.open_room(7, "12::4"))
        self.assertFalse(registry.open_room(7, "31"))
        self.assertEqual(registry.open_rooms(), {7: "31"})
        self.assertEqual(storage["open_conversations"], {"7": "31"})

        registry.open_room(8, "15::4")
        registry.close_room(7)
        self.assertFalse(registry.is_open(7))
        self.assertEqual(registry.room_for(8), "15::4")

    def test_invalid_room_is_not_opened(self) -> None:
        registry = ConversationRegistry()
        with self.assertRaises(ValidationError):
            registry.open_room(7, "nope")
        self.assertEqual(registry.open_rooms(), {})


if __name__ == "__main__":
    unittest.main()

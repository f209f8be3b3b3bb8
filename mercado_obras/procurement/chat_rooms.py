from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping

from mercado_obras.errors import ValidationError


ROOM_SEPARATOR = "::"
SCOPE_QUOTATION = "quotation"
SCOPE_ORDER = "order"


@dataclass(frozen=True)
class RoomKey:
    quotation_id: int | None = None
    supplier_id: int | None = None
    order_id: int | None = None

    @property
    def scope(self) -> str:
        return SCOPE_ORDER if self.order_id is not None else SCOPE_QUOTATION

    def __str__(self) -> str:
        if self.order_id is not None:
            return room_key_for_order(self.order_id)
        return room_key_for_quotation(self.quotation_id, self.supplier_id)


def room_key_for_quotation(quotation_id: int, supplier_id: int) -> str:
    return f"{int(quotation_id)}{ROOM_SEPARATOR}{int(supplier_id)}"


def room_key_for_order(order_id: int) -> str:
    return str(int(order_id))


def parse_room_key(raw: str | None) -> RoomKey:
    value = str(raw or "").strip()
    try:
        if ROOM_SEPARATOR in value:
            quotation_part, supplier_part = value.split(ROOM_SEPARATOR, 1)
            key = RoomKey(quotation_id=int(quotation_part), supplier_id=int(supplier_part))
        else:
            key = RoomKey(order_id=int(value))
    except ValueError:
        raise ValidationError("room_key_invalid", details=f"room key invalida: {value!r}") from None
    if any(part is not None and part <= 0 for part in (key.quotation_id, key.supplier_id, key.order_id)):
        raise ValidationError("room_key_invalid", details=f"room key invalida: {value!r}")
    return key


class ConversationFeed:
    """Single message list fed by both realtime pushes and polling.

    Deliveries are at-least-once, so whatever path a message arrives on it is
    kept once, keyed by id, and exposed in id order.
    """

    def __init__(self, messages: Iterable[Mapping[str, Any]] = (), limit: int | None = None) -> None:
        self._by_id: Dict[int, Dict[str, Any]] = {}
        self._limit = limit
        self.merge(messages)

    def merge(self, messages: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        added: List[Dict[str, Any]] = []
        for message in messages or ():
            message_id = int(message["id"])
            if message_id in self._by_id:
                continue
            entry = dict(message)
            self._by_id[message_id] = entry
            added.append(entry)
        if self._limit and len(self._by_id) > self._limit:
            # Oldest ids go first; polling can always reload them.
            for message_id in sorted(self._by_id)[: len(self._by_id) - self._limit]:
                del self._by_id[message_id]
        added.sort(key=lambda entry: int(entry["id"]))
        return added

    @property
    def last_id(self) -> int:
        return max(self._by_id, default=0)

    def messages(self) -> List[Dict[str, Any]]:
        return [self._by_id[message_id] for message_id in sorted(self._by_id)]

    def __len__(self) -> int:
        return len(self._by_id)


class ConversationRegistry:
    """One open chat surface per counterparty within a client session.

    Backed by any mutable mapping; the HTTP layer hands in the Flask session.
    """

    def __init__(self, storage: MutableMapping[str, Any] | None = None, key: str = "open_conversations") -> None:
        self._storage = storage if storage is not None else {}
        self._key = key

    def _rooms(self) -> Dict[str, str]:
        return dict(self._storage.get(self._key) or {})

    def _save(self, rooms: Dict[str, str]) -> None:
        # Reassigning marks a Flask session as modified.
        self._storage[self._key] = rooms

    def open_room(self, counterparty_id: int, room_key: str) -> bool:
        """Returns True when a new surface was opened, False when an existing one was retargeted."""
        parse_room_key(room_key)
        rooms = self._rooms()
        created = str(counterparty_id) not in rooms
        rooms[str(counterparty_id)] = str(room_key)
        self._save(rooms)
        return created

    def close_room(self, counterparty_id: int) -> None:
        rooms = self._rooms()
        if rooms.pop(str(counterparty_id), None) is not None:
            self._save(rooms)

    def is_open(self, counterparty_id: int) -> bool:
        return str(counterparty_id) in self._rooms()

    def room_for(self, counterparty_id: int) -> str | None:
        return self._rooms().get(str(counterparty_id))

    def open_rooms(self) -> Dict[int, str]:
        return {int(counterparty_id): room_key for counterparty_id, room_key in self._rooms().items()}

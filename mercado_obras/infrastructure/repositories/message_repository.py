from __future__ import annotations

from typing import Iterable

from mercado_obras.infrastructure.repositories.base import BaseRepository


class MessageRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        room_key: str,
        sender_id: int,
        content: str,
        client_id: int | None,
        supplier_id: int | None,
        quotation_id: int | None,
        order_id: int | None,
    ) -> dict:
        cursor = db.execute(
            """
            INSERT INTO messages (room_key, sender_id, content, client_id, supplier_id, quotation_id, order_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id, room_key, sender_id, content, created_at
            """,
            (room_key, sender_id, content, client_id, supplier_id, quotation_id, order_id),
        )
        rows = cursor.fetchall()
        return dict(rows[0])

    def list_for_room(self, db, room_key: str, *, after_id: int = 0, limit: int = 200) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, room_key, sender_id, content, created_at
            FROM messages
            WHERE room_key = ? AND id > ?
            ORDER BY id
            LIMIT ?
            """,
            (room_key, int(after_id or 0), int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def latest_from_other(self, db, room_key: str, user_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, room_key, sender_id, content, created_at
            FROM messages
            WHERE room_key = ? AND sender_id <> ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (room_key, user_id),
        ).fetchone()
        return self.row_to_dict(row)

    def last_messages(self, db, room_keys: Iterable[str]) -> dict[str, dict]:
        """Most recent message per room, keyed by room key."""
        keys = sorted({str(key) for key in room_keys})
        if not keys:
            return {}
        rows = db.execute(
            f"""
            SELECT m.id, m.room_key, m.sender_id, m.content, m.created_at
            FROM messages m
            WHERE m.id IN (
                SELECT MAX(id) FROM messages WHERE room_key IN ({self.placeholders(keys)}) GROUP BY room_key
            )
            """,
            tuple(keys),
        ).fetchall()
        return {str(row["room_key"]): row for row in self.rows_to_dicts(rows)}

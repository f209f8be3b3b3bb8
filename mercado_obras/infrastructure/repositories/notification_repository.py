from __future__ import annotations

from mercado_obras.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    def create(self, db, *, user_id: int, title: str, message: str, link: str | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (user_id, title, message, link)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (user_id, title, message, link),
        )
        return self.inserted_id(cursor)

    def list_for_user(self, db, user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[dict]:
        unread_sql = "AND read_at IS NULL" if unread_only else ""
        rows = db.execute(
            f"""
            SELECT id, user_id, title, message, link, read_at, created_at
            FROM notifications
            WHERE user_id = ? {unread_sql}
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

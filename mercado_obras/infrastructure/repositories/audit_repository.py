from __future__ import annotations

import json
from typing import Any

from mercado_obras.infrastructure.repositories.base import BaseRepository


class AuditRepository(BaseRepository):
    def record(self, db, *, user_id: int | None, action: str, details: dict[str, Any] | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO audit_logs (user_id, action, details)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (user_id, action, json.dumps(details or {}, ensure_ascii=False, default=str)),
        )
        return self.inserted_id(cursor)

    def list_by_action(self, db, action: str, *, limit: int = 100) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, user_id, action, details, created_at
            FROM audit_logs
            WHERE action = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (action, int(limit)),
        ).fetchall()
        records = self.rows_to_dicts(rows)
        for record in records:
            try:
                record["details"] = json.loads(record.get("details") or "{}")
            except (TypeError, ValueError):
                record["details"] = {}
        return records

from __future__ import annotations

from typing import Any, Iterable

from mercado_obras.infrastructure.repositories.base import BaseRepository


# Timestamp column stamped when a quotation enters the given status.
_STATUS_TIMESTAMPS = {
    "sent": "sent_at",
    "closed": "closed_at",
    "cancelled": "cancelled_at",
}


class QuotationRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        client_id: int,
        site_id: int,
        status: str,
        notes: str | None,
        valid_until: str | None,
    ) -> int:
        sent_at_sql = "CURRENT_TIMESTAMP" if status == "sent" else "NULL"
        cursor = db.execute(
            f"""
            INSERT INTO quotations (number, client_id, site_id, status, notes, valid_until, sent_at)
            VALUES ((SELECT COALESCE(MAX(number), 0) + 1 FROM quotations), ?, ?, ?, ?, ?, {sent_at_sql})
            RETURNING id
            """,
            (client_id, site_id, status, notes, valid_until),
        )
        return self.inserted_id(cursor)

    def add_item(
        self,
        db,
        *,
        quotation_id: int,
        line_no: int,
        name: str,
        quantity: float,
        unit: str,
        group_name: str,
        material_id: int | None = None,
        note: str | None = None,
        phase_name: str | None = None,
        service_name: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotation_items (
                quotation_id, line_no, material_id, name, quantity, unit, group_name, note, phase_name, service_name
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (quotation_id, line_no, material_id, name, quantity, unit, group_name, note, phase_name, service_name),
        )
        return self.inserted_id(cursor)

    def delete_items(self, db, quotation_id: int) -> None:
        db.execute("DELETE FROM quotation_items WHERE quotation_id = ?", (quotation_id,))

    def get_by_id(self, db, quotation_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT q.*, s.name AS site_name, s.city AS site_city, s.state AS site_state
            FROM quotations q
            LEFT JOIN sites s ON s.id = q.site_id
            WHERE q.id = ?
            LIMIT 1
            """,
            (quotation_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def list_items(self, db, quotation_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quotation_items
            WHERE quotation_id = ?
            ORDER BY line_no, id
            """,
            (quotation_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_items_for_quotations(self, db, quotation_ids: Iterable[int]) -> dict[int, list[dict]]:
        ids = sorted({int(quotation_id) for quotation_id in quotation_ids})
        grouped: dict[int, list[dict]] = {quotation_id: [] for quotation_id in ids}
        if not ids:
            return grouped
        rows = db.execute(
            f"""
            SELECT *
            FROM quotation_items
            WHERE quotation_id IN ({self.placeholders(ids)})
            ORDER BY quotation_id, line_no, id
            """,
            tuple(ids),
        ).fetchall()
        for row in self.rows_to_dicts(rows):
            grouped[int(row["quotation_id"])].append(row)
        return grouped

    def list_for_client(self, db, client_id: int, *, limit: int = 200) -> list[dict]:
        rows = db.execute(
            """
            SELECT q.id, q.number, q.status, q.site_id, q.valid_until, q.created_at, q.sent_at, q.closed_at,
                   s.name AS site_name,
                   (SELECT COUNT(*) FROM quotation_items qi WHERE qi.quotation_id = q.id) AS item_count,
                   (SELECT COUNT(*) FROM proposals p WHERE p.quotation_id = q.id) AS proposal_count
            FROM quotations q
            LEFT JOIN sites s ON s.id = q.site_id
            WHERE q.client_id = ?
            ORDER BY q.id DESC
            LIMIT ?
            """,
            (client_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_statuses(self, db, statuses: Iterable[str], *, limit: int = 500) -> list[dict]:
        values = list(statuses)
        rows = db.execute(
            f"""
            SELECT q.id, q.number, q.status, q.client_id, q.site_id, q.valid_until, q.created_at, q.sent_at,
                   q.closed_at, s.name AS site_name, s.city AS site_city, s.state AS site_state
            FROM quotations q
            LEFT JOIN sites s ON s.id = q.site_id
            WHERE q.status IN ({self.placeholders(values)})
            ORDER BY q.id DESC
            LIMIT ?
            """,
            (*values, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def transition(
        self,
        db,
        quotation_id: int,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Optimistic status change; False when the quotation was no longer in ``from_statuses``."""
        sources = list(from_statuses)
        updates = ["status = ?", "updated_at = CURRENT_TIMESTAMP"]
        params: list[Any] = [to_status]
        timestamp_column = _STATUS_TIMESTAMPS.get(to_status)
        if timestamp_column:
            updates.append(f"{timestamp_column} = COALESCE({timestamp_column}, CURRENT_TIMESTAMP)")
        for key, value in (fields or {}).items():
            updates.append(f"{key} = ?")
            params.append(value)
        params.append(quotation_id)
        params.extend(sources)
        cursor = db.execute(
            f"""
            UPDATE quotations
            SET {", ".join(updates)}
            WHERE id = ? AND status IN ({self.placeholders(sources)})
            """,
            tuple(params),
        )
        return int(cursor.rowcount or 0) == 1

from __future__ import annotations

from typing import Iterable

from mercado_obras.infrastructure.repositories.base import BaseRepository


class ProposalRepository(BaseRepository):
    def get_by_id(self, db, proposal_id: int) -> dict | None:
        row = db.execute("SELECT * FROM proposals WHERE id = ? LIMIT 1", (proposal_id,)).fetchone()
        return self.row_to_dict(row)

    def get_for_supplier(self, db, quotation_id: int, supplier_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM proposals
            WHERE quotation_id = ? AND supplier_id = ?
            LIMIT 1
            """,
            (quotation_id, supplier_id),
        ).fetchone()
        return self.row_to_dict(row)

    def upsert(
        self,
        db,
        *,
        quotation_id: int,
        supplier_id: int,
        total_value: float,
        freight: float,
        payment_terms: str | None,
        valid_until: str | None,
        notes: str | None,
    ) -> int:
        """One proposal per (quotation, supplier); resubmission rewrites terms and reopens it."""
        cursor = db.execute(
            """
            INSERT INTO proposals (
                number, quotation_id, supplier_id, total_value, freight, payment_terms, valid_until, notes, status
            )
            VALUES ((SELECT COALESCE(MAX(number), 0) + 1 FROM proposals), ?, ?, ?, ?, ?, ?, ?, 'pending')
            ON CONFLICT (quotation_id, supplier_id) DO UPDATE SET
                total_value = excluded.total_value,
                freight = excluded.freight,
                payment_terms = excluded.payment_terms,
                valid_until = excluded.valid_until,
                notes = excluded.notes,
                status = 'pending',
                updated_at = CURRENT_TIMESTAMP
            RETURNING id
            """,
            (quotation_id, supplier_id, total_value, freight, payment_terms, valid_until, notes),
        )
        return self.inserted_id(cursor)

    def replace_items(self, db, proposal_id: int, items: Iterable[dict]) -> int:
        db.execute("DELETE FROM proposal_items WHERE proposal_id = ?", (proposal_id,))
        count = 0
        for item in items:
            db.execute(
                """
                INSERT INTO proposal_items (
                    proposal_id, quotation_item_id, unit_price, quantity, subtotal, availability, lead_time_days, note
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    proposal_id,
                    item["quotation_item_id"],
                    item["unit_price"],
                    item["quantity"],
                    item["subtotal"],
                    item["availability"],
                    item["lead_time_days"],
                    item.get("note"),
                ),
            )
            count += 1
        return count

    def list_for_quotation(self, db, quotation_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT p.*, s.name AS supplier_name, s.user_id AS supplier_user_id
            FROM proposals p
            JOIN suppliers s ON s.id = p.supplier_id
            WHERE p.quotation_id = ?
            ORDER BY p.id
            """,
            (quotation_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_items(self, db, proposal_ids: Iterable[int]) -> dict[int, list[dict]]:
        ids = sorted({int(proposal_id) for proposal_id in proposal_ids})
        grouped: dict[int, list[dict]] = {proposal_id: [] for proposal_id in ids}
        if not ids:
            return grouped
        rows = db.execute(
            f"""
            SELECT pi.*, qi.name AS item_name, qi.unit AS item_unit
            FROM proposal_items pi
            JOIN quotation_items qi ON qi.id = pi.quotation_item_id
            WHERE pi.proposal_id IN ({self.placeholders(ids)})
            ORDER BY pi.proposal_id, qi.line_no, qi.id
            """,
            tuple(ids),
        ).fetchall()
        for row in self.rows_to_dicts(rows):
            grouped[int(row["proposal_id"])].append(row)
        return grouped

    def list_for_supplier(self, db, supplier_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quotation_id, status, total_value, freight, submitted_at, updated_at
            FROM proposals
            WHERE supplier_id = ?
            ORDER BY id DESC
            """,
            (supplier_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def count_for_quotation(self, db, quotation_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM proposals WHERE quotation_id = ?",
            (quotation_id,),
        ).fetchone()
        return int(row["total"] if row else 0)

    def settle(self, db, quotation_id: int, accepted_ids: Iterable[int]) -> None:
        """Marks winners accepted and every other proposal of the quotation rejected."""
        accepted = sorted({int(proposal_id) for proposal_id in accepted_ids})
        if accepted:
            db.execute(
                f"""
                UPDATE proposals
                SET status = 'accepted', updated_at = CURRENT_TIMESTAMP
                WHERE quotation_id = ? AND id IN ({self.placeholders(accepted)})
                """,
                (quotation_id, *accepted),
            )
            db.execute(
                f"""
                UPDATE proposals
                SET status = 'rejected', updated_at = CURRENT_TIMESTAMP
                WHERE quotation_id = ? AND id NOT IN ({self.placeholders(accepted)})
                """,
                (quotation_id, *accepted),
            )
            return
        db.execute(
            "UPDATE proposals SET status = 'rejected', updated_at = CURRENT_TIMESTAMP WHERE quotation_id = ?",
            (quotation_id,),
        )

    def expire_overdue(self, db, today: str) -> list[dict]:
        rows = db.execute(
            """
            UPDATE proposals
            SET status = 'expired', updated_at = CURRENT_TIMESTAMP
            WHERE status = 'pending'
              AND valid_until IS NOT NULL
              AND valid_until < ?
              AND quotation_id IN (
                  SELECT id FROM quotations WHERE status IN ('sent', 'under_review', 'answered')
              )
            RETURNING id, quotation_id, supplier_id
            """,
            (today,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_between(self, db, *, client_id: int, supplier_id: int) -> list[dict]:
        """Quotations of ``client_id`` that ``supplier_id`` has quoted."""
        rows = db.execute(
            """
            SELECT p.id, p.quotation_id, p.status, q.number AS quotation_number
            FROM proposals p
            JOIN quotations q ON q.id = p.quotation_id
            WHERE q.client_id = ? AND p.supplier_id = ?
            ORDER BY p.quotation_id
            """,
            (client_id, supplier_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

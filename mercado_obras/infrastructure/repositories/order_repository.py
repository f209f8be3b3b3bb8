from __future__ import annotations

from mercado_obras.infrastructure.repositories.base import BaseRepository


_ORDER_COLUMNS = """
    o.id, o.number, o.quotation_id, o.proposal_id, o.supplier_id, o.client_id, o.site_id, o.status,
    o.subtotal, o.freight, o.total, o.payment_terms, o.approved_at, o.invoice_issuance_at, o.picking_at,
    o.shipping_at, o.delivered_at, o.cancelled_at, o.created_at, o.updated_at,
    q.number AS quotation_number, s.name AS supplier_name, s.user_id AS supplier_user_id,
    u.name AS client_name, st.name AS site_name, st.city AS site_city, st.state AS site_state
"""

_ORDER_JOINS = """
    JOIN quotations q ON q.id = o.quotation_id
    JOIN suppliers s ON s.id = o.supplier_id
    JOIN users u ON u.id = o.client_id
    LEFT JOIN sites st ON st.id = o.site_id
"""


class OrderRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        quotation_id: int,
        proposal_id: int,
        supplier_id: int,
        client_id: int,
        site_id: int | None,
        subtotal: float,
        freight: float,
        total: float,
        payment_terms: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO orders (
                number, quotation_id, proposal_id, supplier_id, client_id, site_id,
                status, subtotal, freight, total, payment_terms
            )
            VALUES ((SELECT COALESCE(MAX(number), 0) + 1 FROM orders), ?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?)
            RETURNING id
            """,
            (quotation_id, proposal_id, supplier_id, client_id, site_id, subtotal, freight, total, payment_terms),
        )
        return self.inserted_id(cursor)

    def add_item(
        self,
        db,
        *,
        order_id: int,
        quotation_item_id: int,
        name: str,
        quantity: float,
        unit: str | None,
        unit_price: float,
        subtotal: float,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO order_items (order_id, quotation_item_id, name, quantity, unit, unit_price, subtotal)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (order_id, quotation_item_id, name, quantity, unit, unit_price, subtotal),
        )
        return self.inserted_id(cursor)

    def get_by_id(self, db, order_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM orders o
            {_ORDER_JOINS}
            WHERE o.id = ?
            LIMIT 1
            """,
            (order_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def find_for_supplier(self, db, quotation_id: int, supplier_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, number, status
            FROM orders
            WHERE quotation_id = ? AND supplier_id = ?
            LIMIT 1
            """,
            (quotation_id, supplier_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_for_quotation(self, db, quotation_id: int) -> list[dict]:
        rows = db.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM orders o
            {_ORDER_JOINS}
            WHERE o.quotation_id = ?
            ORDER BY o.id
            """,
            (quotation_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_client(self, db, client_id: int, *, limit: int = 200) -> list[dict]:
        rows = db.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM orders o
            {_ORDER_JOINS}
            WHERE o.client_id = ?
            ORDER BY o.id DESC
            LIMIT ?
            """,
            (client_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_supplier(self, db, supplier_id: int, *, limit: int = 200) -> list[dict]:
        rows = db.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            FROM orders o
            {_ORDER_JOINS}
            WHERE o.supplier_id = ?
            ORDER BY o.id DESC
            LIMIT ?
            """,
            (supplier_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_items(self, db, order_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, order_id, quotation_item_id, name, quantity, unit, unit_price, subtotal
            FROM order_items
            WHERE order_id = ?
            ORDER BY id
            """,
            (order_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_attachments(self, db, order_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, order_id, kind, url, filename, content_type, size_bytes, uploaded_by, created_at
            FROM order_attachments
            WHERE order_id = ?
            ORDER BY id
            """,
            (order_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def get_attachment(self, db, order_id: int, attachment_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, order_id, kind, url, filename, content_type, size_bytes, uploaded_by, created_at
            FROM order_attachments
            WHERE id = ? AND order_id = ?
            """,
            (attachment_id, order_id),
        ).fetchone()
        return self.row_to_dict(row)

    def add_attachment(
        self,
        db,
        *,
        order_id: int,
        kind: str,
        url: str,
        filename: str | None,
        content_type: str | None,
        size_bytes: int,
        uploaded_by: int | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO order_attachments (order_id, kind, url, filename, content_type, size_bytes, uploaded_by)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (order_id, kind, url, filename, content_type, size_bytes, uploaded_by),
        )
        return self.inserted_id(cursor)

    def advance_status(self, db, order_id: int, *, from_status: str, to_status: str) -> bool:
        """Guarded status move; the destination timestamp is written once and never overwritten."""
        column = f"{to_status}_at"
        cursor = db.execute(
            f"""
            UPDATE orders
            SET status = ?, {column} = COALESCE({column}, CURRENT_TIMESTAMP), updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status = ?
            """,
            (to_status, order_id, from_status),
        )
        return int(cursor.rowcount or 0) == 1

    def list_between(self, db, *, client_id: int, supplier_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, number, quotation_id, status
            FROM orders
            WHERE client_id = ? AND supplier_id = ?
            ORDER BY id
            """,
            (client_id, supplier_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

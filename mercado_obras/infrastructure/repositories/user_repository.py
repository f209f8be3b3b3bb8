from __future__ import annotations

from mercado_obras.infrastructure.repositories.base import BaseRepository


class UserRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        name: str,
        role: str,
        email: str | None = None,
        company_name: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO users (name, email, role, company_name)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (name, email, role, company_name),
        )
        return self.inserted_id(cursor)

    def get_by_id(self, db, user_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT u.id, u.name, u.email, u.role, u.company_name, s.id AS supplier_id
            FROM users u
            LEFT JOIN suppliers s ON s.user_id = u.id
            WHERE u.id = ?
            LIMIT 1
            """,
            (user_id,),
        ).fetchone()
        return self.row_to_dict(row)

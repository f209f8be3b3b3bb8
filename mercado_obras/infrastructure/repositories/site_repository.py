from __future__ import annotations

from mercado_obras.infrastructure.repositories.base import BaseRepository


class SiteRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        client_id: int,
        name: str,
        city: str | None = None,
        state: str | None = None,
        address: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO sites (client_id, name, city, state, address)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (client_id, name, city, state, address),
        )
        return self.inserted_id(cursor)

    def get_by_id(self, db, site_id: int) -> dict | None:
        row = db.execute(
            "SELECT id, client_id, name, city, state, address FROM sites WHERE id = ? LIMIT 1",
            (site_id,),
        ).fetchone()
        return self.row_to_dict(row)


class CatalogRepository(BaseRepository):
    def list_group_names(self, db) -> list[str]:
        rows = db.execute("SELECT name FROM material_groups ORDER BY name").fetchall()
        return [str(row["name"]) for row in rows]

    def add_group(self, db, name: str) -> None:
        db.execute(
            "INSERT INTO material_groups (name) VALUES (?) ON CONFLICT (name) DO NOTHING",
            (name,),
        )

    def create_material(self, db, *, name: str, group_name: str | None = None, unit: str | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO materials (name, group_name, unit)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (name, group_name, unit),
        )
        return self.inserted_id(cursor)

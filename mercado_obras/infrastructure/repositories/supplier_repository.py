from __future__ import annotations

import json
from typing import Iterable

from mercado_obras.infrastructure.repositories.base import BaseRepository


def _parse_regions(raw) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        values = raw
    else:
        try:
            values = json.loads(raw)
        except (TypeError, ValueError):
            values = str(raw).split(",")
    return [str(value).strip() for value in values if str(value).strip()]


class SupplierRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        user_id: int,
        name: str,
        email: str | None = None,
        regions: Iterable[str] = (),
        status: str = "active",
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO suppliers (user_id, name, email, regions, status)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (user_id, name, email, json.dumps(list(regions)), status),
        )
        return self.inserted_id(cursor)

    def add_group(self, db, supplier_id: int, group_name: str) -> None:
        db.execute(
            """
            INSERT INTO supplier_groups (supplier_id, group_name)
            VALUES (?, ?)
            ON CONFLICT (supplier_id, group_name) DO NOTHING
            """,
            (supplier_id, group_name),
        )

    def add_material(self, db, supplier_id: int, material_id: int, active: bool = True) -> None:
        db.execute(
            """
            INSERT INTO supplier_materials (supplier_id, material_id, active)
            VALUES (?, ?, ?)
            ON CONFLICT (supplier_id, material_id) DO UPDATE SET active = excluded.active
            """,
            (supplier_id, material_id, 1 if active else 0),
        )

    def get_by_id(self, db, supplier_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, user_id, name, email, status, regions
            FROM suppliers
            WHERE id = ?
            LIMIT 1
            """,
            (supplier_id,),
        ).fetchone()
        supplier = self.row_to_dict(row)
        if supplier:
            supplier["regions"] = _parse_regions(supplier.get("regions"))
        return supplier

    def list_active(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, user_id, name, email, status, regions
            FROM suppliers
            WHERE status = 'active'
            ORDER BY id
            """
        ).fetchall()
        suppliers = self.rows_to_dicts(rows)
        for supplier in suppliers:
            supplier["regions"] = _parse_regions(supplier.get("regions"))
        return suppliers

    def coverage(self, db, supplier_id: int) -> dict:
        """Material groups (lowercased), active material ids and service regions of a supplier."""
        group_rows = db.execute(
            "SELECT group_name FROM supplier_groups WHERE supplier_id = ?",
            (supplier_id,),
        ).fetchall()
        material_rows = db.execute(
            "SELECT material_id FROM supplier_materials WHERE supplier_id = ? AND active = 1",
            (supplier_id,),
        ).fetchall()
        supplier = self.get_by_id(db, supplier_id) or {}
        return {
            "groups": {str(row["group_name"]).strip().lower() for row in group_rows if row["group_name"]},
            "material_ids": {int(row["material_id"]) for row in material_rows},
            "regions": list(supplier.get("regions") or []),
        }

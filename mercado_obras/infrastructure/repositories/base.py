from __future__ import annotations

from typing import Any, Iterable, Sequence


class BaseRepository:
    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def row_to_dict(row: Any) -> dict | None:
        return dict(row) if row else None

    @staticmethod
    def inserted_id(cursor) -> int:
        rows = cursor.fetchall()
        row = rows[0]
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def placeholders(values: Sequence[Any]) -> str:
        return ",".join("?" for _ in values)

import contextlib
import sqlite3
from typing import Dict, Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


# Raised by either driver when a UNIQUE/CHECK constraint rejects a write.
INTEGRITY_ERRORS = (sqlite3.IntegrityError,) + ((psycopg2.IntegrityError,) if psycopg2 is not None else ())


DEFAULT_MATERIAL_GROUPS = (
    "Agregados",
    "Aço e Ferragens",
    "Blocos e Tijolos",
    "Cimento e Argamassa",
    "Elétrica",
    "Hidráulica",
    "Madeiras",
    "Pisos e Revestimentos",
    "Tintas e Acabamento",
)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    @contextlib.contextmanager
    def transaction(self):
        """All-or-nothing unit of work.

        Postgres connections run in autocommit outside this block, so it is
        switched off for the duration and restored afterwards. SQLite already
        opens an implicit transaction on the first write.
        """
        if self.backend == "postgres":
            self._conn.autocommit = False
        try:
            yield self
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            if self.backend == "postgres":
                self._conn.autocommit = True

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    in_dollar = False
    i = 0
    while i < len(sql):
        ch = sql[i]
        if not in_single and sql[i : i + 2] == "$$":
            in_dollar = not in_dollar
            current.append("$$")
            i += 2
            continue
        if not in_dollar:
            if ch == "'":
                in_single = not in_single
            elif ch == ";" and not in_single:
                statements.append("".join(current))
                current = []
                i += 1
                continue
        current.append(ch)
        i += 1
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, timeout=10.0)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def connect(db_path: str) -> Database:
    """Standalone connection for code running outside a request (scheduler, tests)."""
    return _connect_database(db_path)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)
    db.commit()


_SQLITE_TYPES: Dict[str, str] = {
    "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "ts": "TEXT",
    "date": "TEXT",
    "money": "REAL",
}

_POSTGRES_TYPES: Dict[str, str] = {
    "pk": "SERIAL PRIMARY KEY",
    "ts": "TIMESTAMP",
    "date": "DATE",
    "money": "DOUBLE PRECISION",
}


_TABLES: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id {pk},
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        role TEXT NOT NULL DEFAULT 'client' CHECK (role IN ('client','supplier','admin')),
        company_name TEXT,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS suppliers (
        id {pk},
        user_id INTEGER NOT NULL UNIQUE REFERENCES users (id),
        name TEXT NOT NULL,
        email TEXT,
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','suspended')),
        regions TEXT NOT NULL DEFAULT '[]',
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS material_groups (
        id {pk},
        name TEXT NOT NULL UNIQUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS materials (
        id {pk},
        name TEXT NOT NULL,
        group_name TEXT,
        unit TEXT,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS supplier_groups (
        id {pk},
        supplier_id INTEGER NOT NULL REFERENCES suppliers (id),
        group_name TEXT NOT NULL,
        UNIQUE (supplier_id, group_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS supplier_materials (
        id {pk},
        supplier_id INTEGER NOT NULL REFERENCES suppliers (id),
        material_id INTEGER NOT NULL REFERENCES materials (id),
        active INTEGER NOT NULL DEFAULT 1,
        UNIQUE (supplier_id, material_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sites (
        id {pk},
        client_id INTEGER NOT NULL REFERENCES users (id),
        name TEXT NOT NULL,
        address TEXT,
        city TEXT,
        state TEXT,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quotations (
        id {pk},
        number INTEGER NOT NULL,
        client_id INTEGER NOT NULL REFERENCES users (id),
        site_id INTEGER NOT NULL REFERENCES sites (id),
        status TEXT NOT NULL DEFAULT 'sent' CHECK (
            status IN ('draft','sent','under_review','answered','closed','cancelled')
        ),
        notes TEXT,
        valid_until {date},
        sent_at {ts},
        closed_at {ts},
        cancelled_at {ts},
        cancel_reason TEXT,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quotation_items (
        id {pk},
        quotation_id INTEGER NOT NULL REFERENCES quotations (id),
        line_no INTEGER NOT NULL,
        material_id INTEGER REFERENCES materials (id),
        name TEXT NOT NULL,
        quantity {money} NOT NULL CHECK (quantity > 0),
        unit TEXT NOT NULL DEFAULT 'un',
        group_name TEXT NOT NULL,
        note TEXT,
        phase_name TEXT,
        service_name TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposals (
        id {pk},
        number INTEGER NOT NULL,
        quotation_id INTEGER NOT NULL REFERENCES quotations (id),
        supplier_id INTEGER NOT NULL REFERENCES suppliers (id),
        total_value {money} NOT NULL DEFAULT 0,
        freight {money} NOT NULL DEFAULT 0,
        payment_terms TEXT,
        notes TEXT,
        valid_until {date},
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','accepted','rejected','expired')),
        submitted_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (quotation_id, supplier_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS proposal_items (
        id {pk},
        proposal_id INTEGER NOT NULL REFERENCES proposals (id),
        quotation_item_id INTEGER NOT NULL REFERENCES quotation_items (id),
        unit_price {money} NOT NULL DEFAULT 0 CHECK (unit_price >= 0),
        quantity {money} NOT NULL,
        subtotal {money} NOT NULL DEFAULT 0,
        availability TEXT NOT NULL DEFAULT 'available' CHECK (
            availability IN ('available','on_request','unavailable')
        ),
        lead_time_days INTEGER NOT NULL DEFAULT 0,
        note TEXT,
        UNIQUE (proposal_id, quotation_item_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id {pk},
        number INTEGER NOT NULL,
        quotation_id INTEGER NOT NULL REFERENCES quotations (id),
        proposal_id INTEGER NOT NULL REFERENCES proposals (id),
        supplier_id INTEGER NOT NULL REFERENCES suppliers (id),
        client_id INTEGER NOT NULL REFERENCES users (id),
        site_id INTEGER REFERENCES sites (id),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (
            status IN ('pending','approved','invoice_issuance','picking','shipping','delivered','cancelled')
        ),
        subtotal {money} NOT NULL DEFAULT 0,
        freight {money} NOT NULL DEFAULT 0,
        total {money} NOT NULL DEFAULT 0,
        payment_terms TEXT,
        approved_at {ts},
        invoice_issuance_at {ts},
        picking_at {ts},
        shipping_at {ts},
        delivered_at {ts},
        cancelled_at {ts},
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (quotation_id, supplier_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id {pk},
        order_id INTEGER NOT NULL REFERENCES orders (id),
        quotation_item_id INTEGER NOT NULL REFERENCES quotation_items (id),
        name TEXT NOT NULL,
        quantity {money} NOT NULL,
        unit TEXT,
        unit_price {money} NOT NULL,
        subtotal {money} NOT NULL,
        UNIQUE (order_id, quotation_item_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_attachments (
        id {pk},
        order_id INTEGER NOT NULL REFERENCES orders (id),
        kind TEXT NOT NULL CHECK (kind IN ('invoice','delivery_proof')),
        url TEXT NOT NULL,
        filename TEXT,
        content_type TEXT,
        size_bytes INTEGER NOT NULL DEFAULT 0,
        uploaded_by INTEGER,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id {pk},
        room_key TEXT NOT NULL,
        sender_id INTEGER NOT NULL REFERENCES users (id),
        content TEXT NOT NULL,
        client_id INTEGER,
        supplier_id INTEGER,
        quotation_id INTEGER,
        order_id INTEGER,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id {pk},
        user_id INTEGER NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        link TEXT,
        read_at {ts},
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS status_events (
        id {pk},
        entity TEXT NOT NULL,
        entity_id INTEGER NOT NULL,
        from_status TEXT,
        to_status TEXT,
        reason TEXT,
        actor_id INTEGER,
        occurred_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_logs (
        id {pk},
        user_id INTEGER,
        action TEXT NOT NULL,
        details TEXT,
        created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


_INDEXES: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_quotations_client ON quotations (client_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_quotation_items_quotation ON quotation_items (quotation_id)",
    "CREATE INDEX IF NOT EXISTS idx_proposals_quotation ON proposals (quotation_id)",
    "CREATE INDEX IF NOT EXISTS idx_orders_supplier ON orders (supplier_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_client ON orders (client_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_messages_room ON messages (room_key, id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, read_at)",
    "CREATE INDEX IF NOT EXISTS idx_status_events_entity ON status_events (entity, entity_id)",
]


# Dropped in reverse creation order by the baseline migration downgrade.
TABLE_NAMES: List[str] = [
    "users",
    "suppliers",
    "material_groups",
    "materials",
    "supplier_groups",
    "supplier_materials",
    "sites",
    "quotations",
    "quotation_items",
    "proposals",
    "proposal_items",
    "orders",
    "order_items",
    "order_attachments",
    "messages",
    "notifications",
    "status_events",
    "audit_logs",
]


def _create_tables(db, types: Dict[str, str]) -> None:
    for ddl in _TABLES:
        db.execute(ddl.format(**types))
    for ddl in _INDEXES:
        db.execute(ddl)
    for name in DEFAULT_MATERIAL_GROUPS:
        db.execute(
            "INSERT INTO material_groups (name) VALUES (?) ON CONFLICT (name) DO NOTHING",
            (name,),
        )


def _init_db_sqlite(db: Database):
    _create_tables(db, _SQLITE_TYPES)


def _init_db_postgres(db: Database) -> None:
    _create_tables(db, _POSTGRES_TYPES)
    _create_postgres_updated_at_triggers(db)


def _create_postgres_updated_at_triggers(db: Database) -> None:
    db.execute(
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = CURRENT_TIMESTAMP;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )

    for table in ("suppliers", "quotations", "proposals", "orders"):
        db.executescript(
            f"""
            DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table};
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION set_updated_at();
            """
        )

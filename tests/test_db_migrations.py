import os
import unittest

from mercado_obras import create_app
from mercado_obras.config import Config
from mercado_obras.db import close_db
from mercado_obras.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox, open_sqlite_temp_connection


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="migrations")
        self.db_path = self._temp_db.db_path
        self._prev_env = os.environ.get("FLASK_ENV")
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        if self._prev_env is None:
            os.environ.pop("FLASK_ENV", None)
        else:
            os.environ["FLASK_ENV"] = self._prev_env
        self._temp_db.cleanup()

    def _build_app(self, *, db_auto_init: bool):
        return create_app(self._temp_db.make_config(Config, TESTING=False, DB_AUTO_INIT=db_auto_init))

    def _table_exists(self, table_name: str) -> bool:
        conn = open_sqlite_temp_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
                (table_name,),
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(self._table_exists("quotations"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(db_auto_init=True)
        with app.app_context():
            close_db()

        for table in ("quotations", "proposals", "orders", "messages", "audit_logs"):
            self.assertTrue(self._table_exists(table), table)

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(self._table_exists("quotations"))
        self.assertTrue(self._table_exists("alembic_version"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(self._table_exists("quotations"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(self._table_exists("orders"))

    def test_flask_db_init_creates_schema(self) -> None:
        app = self._build_app(db_auto_init=False)
        result = app.test_cli_runner().invoke(args=["db", "init"])
        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertTrue(self._table_exists("quotations"))

    def test_sqlalchemy_url_mapping(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertEqual(to_sqlalchemy_url("postgresql://u:p@h/db"), "postgresql://u:p@h/db")
        self.assertTrue(to_sqlalchemy_url(self.db_path).startswith("sqlite:///"))
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


if __name__ == "__main__":
    unittest.main()

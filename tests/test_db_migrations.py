import os
import sqlite3
import unittest
from pathlib import Path

from sourcing_engine import create_app
from sourcing_engine.config import Config
from sourcing_engine.db import close_db
from sourcing_engine.db_migrations import to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class SqlAlchemyUrlTest(unittest.TestCase):
    def test_postgres_scheme_is_normalized(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@db/engine"), "postgresql://u:p@db/engine")

    def test_sqlite_path_becomes_absolute_url(self) -> None:
        url = to_sqlalchemy_url("relative/engine.db")
        self.assertTrue(url.startswith("sqlite:///"))
        self.assertTrue(url.endswith(Path("relative/engine.db").resolve().as_posix()))

    def test_empty_path_rejected(self) -> None:
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


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

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        config = self._temp_db.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init)
        return create_app(config)

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.db_path, "requisitions"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        self.assertTrue(_table_exists(self.db_path, "requisitions"))
        self.assertTrue(_table_exists(self.db_path, "sequence_counters"))

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "requisitions"))
        self.assertTrue(_table_exists(self.db_path, "exception_notices"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.db_path, "requisitions"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.db_path, "requisitions"))

    def test_flask_db_init_schema_skips_alembic(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        result = app.test_cli_runner().invoke(args=["db", "init-schema"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertTrue(_table_exists(self.db_path, "purchase_orders"))
        self.assertFalse(_table_exists(self.db_path, "alembic_version"))


if __name__ == "__main__":
    unittest.main()

import contextlib
import logging
import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g

from sourcing_engine.errors import TransactionAbortError


logger = logging.getLogger("sourcing_engine.db")

# serialization_failure, deadlock_detected, unique_violation
_PG_CONFLICT_CODES = {"40001", "40P01", "23505"}


def is_write_conflict(exc: BaseException) -> bool:
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        return "locked" in message or "busy" in message
    if isinstance(exc, sqlite3.IntegrityError):
        return "unique" in str(exc).lower()
    if psycopg2 is not None and isinstance(exc, psycopg2.Error):
        return str(getattr(exc, "pgcode", "") or "") in _PG_CONFLICT_CODES
    return False


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

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

    @contextlib.contextmanager
    def transaction(self):
        """Run the block in one serializable transaction.

        SQLite takes the write lock up front (BEGIN IMMEDIATE) so concurrent
        writers queue instead of failing late. Postgres runs SERIALIZABLE and
        reports conflicts at statement or commit time. Either way a conflict
        surfaces as TransactionAbortError after the rollback.
        """
        if self._in_transaction:
            raise RuntimeError("Nested transactions are not supported.")
        try:
            self.execute(self._begin_statement())
        except Exception as exc:
            if is_write_conflict(exc):
                raise TransactionAbortError(details=str(exc)) from exc
            raise

        self._in_transaction = True
        try:
            yield self
            self.execute("COMMIT")
        except Exception as exc:
            self._rollback()
            if is_write_conflict(exc):
                raise TransactionAbortError(details=str(exc)) from exc
            raise
        finally:
            self._in_transaction = False

    def _begin_statement(self) -> str:
        if self.backend == "postgres":
            return "BEGIN ISOLATION LEVEL SERIALIZABLE"
        return "BEGIN IMMEDIATE"

    def _rollback(self) -> None:
        try:
            self.execute("ROLLBACK")
        except Exception:  # noqa: BLE001
            logger.warning("transaction_rollback_failed", exc_info=True)

    def commit(self):
        if self._in_transaction:
            return
        self._conn.commit()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: transactions are opened explicitly by Database.transaction().
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    ensure_schema(get_db())


def ensure_schema(db: Database) -> None:
    if db.backend == "postgres":
        types = {"money": "DOUBLE PRECISION", "serial": "BIGSERIAL PRIMARY KEY"}
    else:
        types = {"money": "REAL", "serial": "INTEGER PRIMARY KEY AUTOINCREMENT"}
    for statement in SCHEMA_STATEMENTS:
        db.execute(statement.format(**types))
    db.commit()


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS vendors (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        vendor_code TEXT NOT NULL,
        name TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'Active',
        currency TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (tenant_id, vendor_code)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS materials (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        code TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        procurement_category TEXT,
        uom TEXT NOT NULL DEFAULT 'EA',
        price_unit {money} NOT NULL DEFAULT 1,
        oem_part_number TEXT,
        ocm_part_number TEXT,
        total_lead_time_days INTEGER,
        last_purchase_price {money},
        currency TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS material_vendors (
        tenant_id TEXT NOT NULL,
        material_id TEXT NOT NULL,
        vendor_id TEXT NOT NULL,
        priority INTEGER,
        has_agreement INTEGER NOT NULL DEFAULT 0,
        agreement_status TEXT,
        agreement_ref TEXT,
        price {money},
        currency TEXT,
        lead_time_days INTEGER,
        min_order_qty {money},
        valid_from TEXT,
        valid_to TEXT,
        tax_percent {money} NOT NULL DEFAULT 0,
        discount_percent {money} NOT NULL DEFAULT 0,
        payment_terms TEXT,
        incoterm TEXT,
        PRIMARY KEY (tenant_id, material_id, vendor_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS requisitions (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        number TEXT NOT NULL,
        status TEXT NOT NULL,
        notes TEXT,
        warehouse_id TEXT,
        source_kind TEXT NOT NULL DEFAULT 'manual',
        created_by TEXT,
        created_at TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        UNIQUE (tenant_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS requisition_lines (
        tenant_id TEXT NOT NULL,
        requisition_id TEXT NOT NULL,
        line_no INTEGER NOT NULL,
        material_id TEXT NOT NULL,
        description TEXT,
        quantity {money} NOT NULL,
        requested_quantity {money},
        uom TEXT,
        review_status TEXT NOT NULL,
        assigned_vendor_id TEXT,
        assigned_vendor_name TEXT,
        agreed_price {money},
        discount_percent {money} NOT NULL DEFAULT 0,
        currency TEXT,
        lead_time_days INTEGER,
        sourcing_method TEXT,
        sourcing_ref TEXT,
        quote_id TEXT,
        po_id TEXT,
        po_number TEXT,
        PRIMARY KEY (tenant_id, requisition_id, line_no)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rfqs (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        number TEXT NOT NULL,
        category_id TEXT,
        status TEXT NOT NULL,
        valid_until TEXT,
        notes TEXT,
        created_at TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        UNIQUE (tenant_id, number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rfq_items (
        tenant_id TEXT NOT NULL,
        rfq_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        material_id TEXT NOT NULL,
        description TEXT,
        quantity {money} NOT NULL,
        uom TEXT,
        requisition_id TEXT,
        line_no INTEGER,
        PRIMARY KEY (tenant_id, rfq_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quotes (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        rfq_id TEXT NOT NULL,
        rfq_number TEXT NOT NULL,
        quote_number TEXT NOT NULL,
        vendor_id TEXT NOT NULL,
        vendor_name TEXT,
        vendor_code TEXT,
        status TEXT NOT NULL,
        total_value {money} NOT NULL DEFAULT 0,
        reference_number TEXT,
        quote_date TEXT,
        valid_until TEXT,
        tax_percentage {money} NOT NULL DEFAULT 0,
        overall_discount {money} NOT NULL DEFAULT 0,
        currency TEXT,
        payment_terms TEXT,
        incoterm TEXT,
        sent_at TEXT,
        award_reason TEXT,
        awarded_at TEXT,
        awarded_by TEXT,
        exception_notice_id TEXT,
        created_at TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        UNIQUE (tenant_id, rfq_id, vendor_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_items (
        tenant_id TEXT NOT NULL,
        quote_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        material_id TEXT NOT NULL,
        description TEXT,
        quantity {money} NOT NULL,
        uom TEXT,
        requisition_id TEXT,
        line_no INTEGER,
        quoted_unit_price {money},
        quoted_discount {money} NOT NULL DEFAULT 0,
        quoted_total {money},
        lead_time_value INTEGER,
        lead_time_unit TEXT,
        PRIMARY KEY (tenant_id, quote_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS purchase_orders (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        po_number TEXT NOT NULL,
        vendor_id TEXT NOT NULL,
        vendor_name TEXT,
        category_id TEXT,
        currency TEXT,
        status TEXT NOT NULL,
        sub_total {money} NOT NULL DEFAULT 0,
        total_tax {money} NOT NULL DEFAULT 0,
        grand_total {money} NOT NULL DEFAULT 0,
        issue_date TEXT,
        expected_delivery_date TEXT,
        notes TEXT,
        requisition_ids TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        UNIQUE (tenant_id, po_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS purchase_order_items (
        tenant_id TEXT NOT NULL,
        purchase_order_id TEXT NOT NULL,
        line_no INTEGER NOT NULL,
        material_id TEXT NOT NULL,
        pr_id TEXT NOT NULL,
        pr_line_no INTEGER NOT NULL,
        description TEXT,
        item_number TEXT,
        part_number TEXT,
        quantity {money} NOT NULL,
        uom TEXT,
        unit_price {money} NOT NULL,
        price_unit {money} NOT NULL DEFAULT 1,
        discount_percent {money} NOT NULL DEFAULT 0,
        discount_amount {money} NOT NULL DEFAULT 0,
        tax_percent {money} NOT NULL DEFAULT 0,
        tax_amount {money} NOT NULL DEFAULT 0,
        net_amount {money} NOT NULL DEFAULT 0,
        total_amount {money} NOT NULL DEFAULT 0,
        currency TEXT,
        delivery_date TEXT,
        quote_id TEXT,
        quote_number TEXT,
        sourcing_ref TEXT,
        PRIMARY KEY (tenant_id, purchase_order_id, line_no)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS exception_notices (
        id TEXT PRIMARY KEY,
        tenant_id TEXT NOT NULL,
        notice_number TEXT NOT NULL,
        quote_id TEXT NOT NULL,
        quote_number TEXT NOT NULL,
        rfq_id TEXT,
        rfq_number TEXT,
        supplier_name TEXT,
        quote_value {money} NOT NULL,
        threshold_limit {money} NOT NULL,
        violation_type TEXT NOT NULL,
        award_reason TEXT NOT NULL,
        justification TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'Logged',
        created_by TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (tenant_id, notice_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sequence_counters (
        tenant_id TEXT NOT NULL,
        counter_key TEXT NOT NULL,
        value INTEGER NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (tenant_id, counter_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS threshold_settings (
        tenant_id TEXT PRIMARY KEY,
        three_quote_threshold {money} NOT NULL DEFAULT 0,
        tender_threshold {money} NOT NULL DEFAULT 0,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS status_events (
        id {serial},
        entity TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        from_status TEXT,
        to_status TEXT NOT NULL,
        reason TEXT,
        tenant_id TEXT NOT NULL,
        occurred_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_requisition_lines_po ON requisition_lines (tenant_id, po_id)",
    "CREATE INDEX IF NOT EXISTS idx_quotes_rfq ON quotes (tenant_id, rfq_id)",
    "CREATE INDEX IF NOT EXISTS idx_status_events_entity ON status_events (tenant_id, entity, entity_id)",
)

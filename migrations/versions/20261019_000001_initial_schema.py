"""Initial sourcing engine schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from typing import Iterable, Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from sourcing_engine.db import _convert_qmark_to_pg, ensure_schema


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TABLES = (
    "status_events",
    "threshold_settings",
    "sequence_counters",
    "exception_notices",
    "purchase_order_items",
    "purchase_orders",
    "quote_items",
    "quotes",
    "rfq_items",
    "rfqs",
    "requisition_lines",
    "requisitions",
    "material_vendors",
    "materials",
    "vendors",
)


class _AlembicDbAdapter:
    """Just enough of ``Database`` for ``ensure_schema`` to run on Alembic's connection."""

    def __init__(self, connection: Connection, backend: str):
        self._connection = connection
        self.backend = backend

    def execute(self, sql: str, params: Iterable | None = None):
        statement = sql
        if params is None:
            return self._connection.exec_driver_sql(statement)
        if self.backend == "postgres":
            statement = _convert_qmark_to_pg(statement)
        return self._connection.exec_driver_sql(statement, tuple(params))

    def commit(self):
        # Alembic owns the migration transaction.
        return None


def _resolve_backend(connection: Connection) -> str:
    dialect = (connection.dialect.name or "").lower()
    if dialect.startswith("postgres"):
        return "postgres"
    return "sqlite"


def upgrade() -> None:
    connection = op.get_bind()
    ensure_schema(_AlembicDbAdapter(connection, _resolve_backend(connection)))


def downgrade() -> None:
    for table in TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table}")

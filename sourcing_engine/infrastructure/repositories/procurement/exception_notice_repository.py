from __future__ import annotations

from typing import List

from sourcing_engine.domain.models import ExceptionNotice, ViolationType
from sourcing_engine.infrastructure.repositories.base import BaseRepository


_COLUMNS = (
    "id",
    "notice_number",
    "quote_id",
    "quote_number",
    "rfq_id",
    "rfq_number",
    "supplier_name",
    "quote_value",
    "threshold_limit",
    "violation_type",
    "award_reason",
    "justification",
    "status",
    "created_by",
    "created_at",
)


class ExceptionNoticeRepository(BaseRepository):
    """Append-only: notices are written once and never updated."""

    def insert(self, db, notice: ExceptionNotice) -> None:
        values = [getattr(notice, column) for column in _COLUMNS]
        values[_COLUMNS.index("violation_type")] = notice.violation_type.value
        placeholders = ", ".join("?" for _ in range(len(_COLUMNS) + 1))
        db.execute(
            f"""
            INSERT INTO exception_notices (tenant_id, {", ".join(_COLUMNS)})
            VALUES ({placeholders})
            """,
            (self.tenant_id, *values),
        )

    def list_recent(self, db, *, limit: int = 100) -> List[ExceptionNotice]:
        rows = db.execute(
            f"""
            SELECT {", ".join(_COLUMNS)}
            FROM exception_notices
            WHERE tenant_id = ?
            ORDER BY notice_number DESC
            LIMIT ?
            """,
            (self.tenant_id, int(limit)),
        ).fetchall()
        notices = []
        for row in rows:
            values = dict(row)
            values["violation_type"] = ViolationType(values["violation_type"])
            values["quote_value"] = float(values["quote_value"])
            values["threshold_limit"] = float(values["threshold_limit"])
            notices.append(ExceptionNotice(**values))
        return notices

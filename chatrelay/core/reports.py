from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from .errors import CapacityError, NotFoundError
from .messages import next_message_id
from .proto import now_ms

log = logging.getLogger("chatrelay.core.reports")

STATUS_PENDING = "pending"
STATUS_RESOLVED = "resolved"


@dataclass(slots=True)
class Report:
    report_id: str
    message_id: str
    reported_user: str
    reported_by: str
    reason: str
    created_ms: int
    status: str = STATUS_PENDING

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.report_id,
            "message_id": self.message_id,
            "reported_user": self.reported_user,
            "reported_by": self.reported_by,
            "reason": self.reason,
            "timestamp": self.created_ms,
            "status": self.status,
        }


class ReportBook:
    """Filed reports. Never expire; filing stops while ``max_pending`` are unresolved."""

    def __init__(self, now: Callable[[], int] = now_ms, max_pending: int = 200) -> None:
        self.now = now
        self.max_pending = max_pending
        self._reports: Dict[str, Report] = {}

    def file(self, message_id: str, reported_user: str, reported_by: str, reason: str) -> Report:
        if len(self.pending()) >= self.max_pending:
            raise CapacityError("too many unresolved reports", code="REPORTS_FULL")
        ts = self.now()
        report = Report(
            report_id=next_message_id("report", ts),
            message_id=message_id,
            reported_user=reported_user,
            reported_by=reported_by,
            reason=reason.strip(),
            created_ms=ts,
        )
        self._reports[report.report_id] = report
        log.info("Report %s filed against %s", report.report_id, reported_user)
        return report

    def resolve(self, report_id: str) -> Report:
        report = self._reports.get(report_id)
        if report is None:
            raise NotFoundError(f"no report {report_id}")
        if report.status == STATUS_PENDING:
            report.status = STATUS_RESOLVED
        return report

    def pending(self) -> List[Report]:
        return [r for r in self._reports.values() if r.status == STATUS_PENDING]

    def all(self) -> List[Report]:
        return list(self._reports.values())

    def __len__(self) -> int:
        return len(self._reports)

    def clear(self) -> None:
        self._reports.clear()


__all__ = ["Report", "ReportBook", "STATUS_PENDING", "STATUS_RESOLVED"]

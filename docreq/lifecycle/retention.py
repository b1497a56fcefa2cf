"""
Retention for completed requests.

A completed request is kept for a fixed number of calendar months
(three by default) and then purged with its files. Members are reminded
once before the deletion date.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING, Optional, TypeVar

from docreq.errors import DocreqError

if TYPE_CHECKING:
    from docreq.lifecycle.engine import RequestLifecycleEngine

logger = logging.getLogger(__name__)

RETENTION_MONTHS = 3

D = TypeVar("D", date, datetime)


def add_months(start: D, months: int) -> D:
    """Add calendar months, clamping to the last day of the target month.

    ``add_months(date(2025, 11, 30), 3) == date(2026, 2, 28)``
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def deletion_date_for(completed_at: datetime, months: int = RETENTION_MONTHS) -> datetime:
    return add_months(completed_at, months)


@dataclass
class SweepReport:
    """Summary of one retention sweep."""

    started_at: datetime
    reminded: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        lines = [
            f"=== Retention Sweep ({self.started_at.strftime('%Y-%m-%d %H:%M:%S UTC')}) ===",
            f"Reminders sent: {len(self.reminded)}",
            f"Purged:         {len(self.purged)}",
            f"Failed:         {len(self.failed)}",
        ]
        for request_id, error in self.failed.items():
            lines.append(f"  {request_id}: {error}")
        return "\n".join(lines)


class RetentionSweeper:
    """
    Send deletion reminders and purge requests past their deletion date.

    Usage:
        sweeper = RetentionSweeper(engine)
        report = sweeper.run()
        print(report.summary())
    """

    def __init__(self, engine: "RequestLifecycleEngine", reminder_days: Optional[int] = None) -> None:
        self.engine = engine
        self.reminder_days = (
            reminder_days if reminder_days is not None else engine.config.reminder_days
        )

    def run(self) -> SweepReport:
        report = SweepReport(started_at=self.engine.now())
        self.send_reminders(report)
        self.purge_expired(report)
        logger.info(
            "Retention sweep: %d reminded, %d purged, %d failed",
            len(report.reminded), len(report.purged), len(report.failed),
        )
        return report

    def send_reminders(self, report: Optional[SweepReport] = None) -> SweepReport:
        now = self.engine.now()
        report = report or SweepReport(started_at=now)
        until = now + timedelta(days=self.reminder_days)
        store = self.engine.store
        notifier = self.engine.notifier

        for req in store.find_expiring(now, until):
            sent = notifier.notify_event(
                "deletion_reminder",
                partial(notifier.audience, req, actor_id=None),
                related_request_id=req.id,
                request=req,
            )
            if sent.audience_error is not None:
                # Left unmarked so the next sweep retries
                report.failed[req.id] = sent.audience_error
                continue
            try:
                store.update(req.id, {"deletion_reminder_sent_at": now})
            except DocreqError as e:
                report.failed[req.id] = str(e)
                continue
            report.reminded.append(req.id)
        return report

    def purge_expired(self, report: Optional[SweepReport] = None) -> SweepReport:
        now = self.engine.now()
        report = report or SweepReport(started_at=now)

        for req in self.engine.store.find_expired(now):
            try:
                self.engine.expire_request(req.id)
            except DocreqError as e:
                logger.error("Could not purge request %s: %s", req.id, e)
                report.failed[req.id] = str(e)
                continue
            report.purged.append(req.id)
        return report

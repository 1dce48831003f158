"""Change reports written at the end of a group conversion run."""
from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .models import ChangeReportRow

REPORT_PREFIX = "GroupConversion"
REPORT_COLUMNS = ("Action", "TargetGroup", "PrincipalId")
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

logger = logging.getLogger(__name__)


class ChangeReport:
    """Append-only log of the membership changes made in one run."""

    def __init__(self, started_at: Optional[datetime] = None) -> None:
        self.started_at = started_at or datetime.now(timezone.utc)
        self.rows: List[ChangeReportRow] = []

    def __len__(self) -> int:
        return len(self.rows)

    def record(self, action: str, target_group: str, principal_id: str) -> ChangeReportRow:
        row = ChangeReportRow(action=action, target_group=target_group, principal_id=principal_id)
        self.rows.append(row)
        return row

    def filename(self, target_group_id: str) -> str:
        stamp = self.started_at.strftime(TIMESTAMP_FORMAT)
        return f"{REPORT_PREFIX}_{target_group_id}_{stamp}.csv"

    def write(self, directory: Path, target_group_id: str) -> Optional[Path]:
        """Write the rows as CSV, returning the path or ``None`` if nothing was recorded."""

        if not self.rows:
            return None
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.filename(target_group_id)
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(REPORT_COLUMNS)
            for row in self.rows:
                writer.writerow((row.action, row.target_group, row.principal_id))
        logger.info("Wrote %s report rows to %s", len(self.rows), path)
        return path


__all__ = ["ChangeReport", "REPORT_COLUMNS"]

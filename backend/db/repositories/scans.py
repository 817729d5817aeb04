"""Scan repository: scan lifecycle rows and scan history queries."""

import logging

from sqlalchemy import func, select, update

from db.models.maintenance import MaintenanceRule, MaintenanceScan, ScanStatus
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (ScanStatus.PENDING.value, ScanStatus.RUNNING.value)


class ScanRepository(BaseRepository):
    """Repository for maintenance_scans table operations."""

    def _scan_dict(self, scan: MaintenanceScan) -> dict | None:
        data = self._to_dict(scan)
        if data is not None:
            data["manual_trigger"] = bool(data["manual_trigger"])
        return data

    def create_scan(self, rule_id: int, manual_trigger: bool) -> dict:
        scan = MaintenanceScan(
            rule_id=rule_id,
            status=ScanStatus.PENDING.value,
            manual_trigger=1 if manual_trigger else 0,
            items_scanned=0,
            items_flagged=0,
            items_skipped=0,
            candidates_created=0,
            created_at=self._now(),
        )
        self.session.add(scan)
        self._commit()
        return self._scan_dict(scan)

    def get_scan(self, scan_id: int) -> dict | None:
        return self._scan_dict(self.session.get(MaintenanceScan, scan_id))

    def get_active_scan(self, rule_id: int) -> dict | None:
        """Return the PENDING or RUNNING scan for a rule, if any."""
        stmt = (
            select(MaintenanceScan)
            .where(
                MaintenanceScan.rule_id == rule_id,
                MaintenanceScan.status.in_(ACTIVE_STATUSES),
            )
            .order_by(MaintenanceScan.id.desc())
            .limit(1)
        )
        return self._scan_dict(self.session.execute(stmt).scalar_one_or_none())

    def mark_running(self, scan_id: int) -> bool:
        """PENDING/RUNNING -> RUNNING. False if the scan already finished.

        A RUNNING scan is accepted again so a redelivered job can recompute it.
        """
        result = self.session.execute(
            update(MaintenanceScan)
            .where(
                MaintenanceScan.id == scan_id,
                MaintenanceScan.status.in_(ACTIVE_STATUSES),
            )
            .values(status=ScanStatus.RUNNING.value, started_at=self._now(), error=None)
        )
        self._commit()
        return result.rowcount == 1

    def complete_scan(self, scan_id: int, items_scanned: int, items_flagged: int,
                      items_skipped: int, candidates_created: int) -> None:
        scan = self.session.get(MaintenanceScan, scan_id)
        scan.status = ScanStatus.COMPLETED.value
        scan.items_scanned = items_scanned
        scan.items_flagged = items_flagged
        scan.items_skipped = items_skipped
        scan.candidates_created = candidates_created
        scan.completed_at = self._now()
        self._commit()

    def fail_scan(self, scan_id: int, error: str) -> None:
        scan = self.session.get(MaintenanceScan, scan_id)
        if scan is None:
            return
        scan.status = ScanStatus.FAILED.value
        scan.error = error[:2000]
        scan.completed_at = self._now()
        self._commit()

    def get_scans(self, rule_id: int = None, status: str = None, start: str = None,
                  end: str = None, page: int = 1, per_page: int = 50) -> dict:
        """Paginated scan history, newest first, with the rule name attached."""
        conditions = []
        if rule_id is not None:
            conditions.append(MaintenanceScan.rule_id == rule_id)
        if status:
            conditions.append(MaintenanceScan.status == status)
        if start:
            conditions.append(MaintenanceScan.created_at >= start)
        if end:
            conditions.append(MaintenanceScan.created_at <= end)

        stmt = select(MaintenanceScan).where(*conditions).order_by(MaintenanceScan.id.desc())
        count_stmt = select(func.count(MaintenanceScan.id)).where(*conditions)
        result = self._paginate(stmt, count_stmt, page, per_page)
        self._attach_rule_names(result["items"])
        for item in result["items"]:
            item["manual_trigger"] = bool(item["manual_trigger"])
        return result

    def get_recent_completed(self, limit: int = 5) -> list[dict]:
        stmt = (
            select(MaintenanceScan)
            .where(MaintenanceScan.status == ScanStatus.COMPLETED.value)
            .order_by(MaintenanceScan.completed_at.desc())
            .limit(limit)
        )
        items = [self._scan_dict(s) for s in self.session.execute(stmt).scalars().all()]
        self._attach_rule_names(items)
        return items

    def count_by_status(self) -> dict:
        rows = self.session.execute(
            select(MaintenanceScan.status, func.count(MaintenanceScan.id))
            .group_by(MaintenanceScan.status)
        ).all()
        return {status: count for status, count in rows}

    def _attach_rule_names(self, items: list[dict]) -> None:
        rule_ids = {item["rule_id"] for item in items}
        if not rule_ids:
            return
        names = dict(
            self.session.execute(
                select(MaintenanceRule.id, MaintenanceRule.name)
                .where(MaintenanceRule.id.in_(rule_ids))
            ).all()
        )
        for item in items:
            item["rule_name"] = names.get(item["rule_id"])

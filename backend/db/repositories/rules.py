"""Rule repository: CRUD for maintenance rules plus scan summaries.

Deleting a rule removes its scans and candidates in the same transaction;
deletion logs are kept.
"""

import logging

from sqlalchemy import delete, func, select

from db.models.maintenance import MaintenanceCandidate, MaintenanceRule, MaintenanceScan
from db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_RULE_FIELDS = (
    "name",
    "description",
    "enabled",
    "media_type",
    "criteria_json",
    "action_type",
    "delete_files",
    "schedule",
)


class RuleRepository(BaseRepository):
    """Repository for maintenance_rules table operations."""

    def _rule_dict(self, rule: MaintenanceRule) -> dict | None:
        data = self._to_dict(rule)
        if data is None:
            return None
        data["enabled"] = bool(data["enabled"])
        data["delete_files"] = bool(data["delete_files"])
        data["criteria"] = self._loads(data.pop("criteria_json"), {})
        return data

    def create_rule(self, name: str, media_type: str, criteria_json: str,
                    action_type: str, description: str = None, enabled: bool = True,
                    delete_files: bool = True, schedule: str = None) -> dict:
        """Insert a new rule. Returns the rule dict."""
        now = self._now()
        rule = MaintenanceRule(
            name=name,
            description=description,
            enabled=1 if enabled else 0,
            media_type=media_type,
            criteria_json=criteria_json,
            action_type=action_type,
            delete_files=1 if delete_files else 0,
            schedule=schedule or None,
            created_at=now,
            updated_at=now,
        )
        self.session.add(rule)
        self._commit()
        return self._rule_dict(rule)

    def get_rule(self, rule_id: int) -> dict | None:
        return self._rule_dict(self.session.get(MaintenanceRule, rule_id))

    def get_rule_by_name(self, name: str, media_type: str) -> dict | None:
        stmt = select(MaintenanceRule).where(
            MaintenanceRule.name == name,
            MaintenanceRule.media_type == media_type,
        ).order_by(MaintenanceRule.id).limit(1)
        return self._rule_dict(self.session.execute(stmt).scalar_one_or_none())

    def get_rules(self, enabled_only: bool = False) -> list[dict]:
        stmt = select(MaintenanceRule).order_by(MaintenanceRule.name, MaintenanceRule.id)
        if enabled_only:
            stmt = stmt.where(MaintenanceRule.enabled == 1)
        return [self._rule_dict(r) for r in self.session.execute(stmt).scalars().all()]

    def get_rules_with_scan_summary(self) -> list[dict]:
        """All rules with their latest scan and lifetime scan count."""
        counts = dict(
            self.session.execute(
                select(MaintenanceScan.rule_id, func.count(MaintenanceScan.id))
                .group_by(MaintenanceScan.rule_id)
            ).all()
        )
        latest_ids = (
            select(func.max(MaintenanceScan.id))
            .group_by(MaintenanceScan.rule_id)
            .scalar_subquery()
        )
        latest = {
            scan.rule_id: scan
            for scan in self.session.execute(
                select(MaintenanceScan).where(MaintenanceScan.id.in_(latest_ids))
            ).scalars().all()
        }

        result = []
        for rule in self.get_rules():
            scan = latest.get(rule["id"])
            rule["scan_count"] = counts.get(rule["id"], 0)
            rule["latest_scan"] = None if scan is None else {
                "id": scan.id,
                "status": scan.status,
                "items_scanned": scan.items_scanned,
                "items_flagged": scan.items_flagged,
                "started_at": scan.started_at,
                "completed_at": scan.completed_at,
                "error": scan.error,
            }
            result.append(rule)
        return result

    def update_rule(self, rule_id: int, **kwargs) -> dict | None:
        """Update the given rule columns. Returns the updated dict or None if not found."""
        rule = self.session.get(MaintenanceRule, rule_id)
        if rule is None:
            return None
        for key, value in kwargs.items():
            if key not in _RULE_FIELDS:
                continue
            if key in ("enabled", "delete_files"):
                value = 1 if value else 0
            setattr(rule, key, value)
        rule.updated_at = self._now()
        self._commit()
        return self._rule_dict(rule)

    def set_run_times(self, rule_id: int, last_run_at: str = None,
                      next_run_at: str = None, clear_next: bool = False) -> None:
        rule = self.session.get(MaintenanceRule, rule_id)
        if rule is None:
            return
        if last_run_at is not None:
            rule.last_run_at = last_run_at
        if next_run_at is not None or clear_next:
            rule.next_run_at = next_run_at
        self._commit()

    def delete_rule(self, rule_id: int) -> bool:
        """Delete a rule with its scans and candidates. Returns False if not found."""
        rule = self.session.get(MaintenanceRule, rule_id)
        if rule is None:
            return False
        scan_ids = select(MaintenanceScan.id).where(MaintenanceScan.rule_id == rule_id)
        self.session.execute(
            delete(MaintenanceCandidate).where(MaintenanceCandidate.scan_id.in_(scan_ids)),
            execution_options={"synchronize_session": False},
        )
        self.session.execute(delete(MaintenanceScan).where(MaintenanceScan.rule_id == rule_id))
        self.session.delete(rule)
        self._commit()
        logger.info("Deleted maintenance rule %d with its scan history", rule_id)
        return True

    def count_rules(self) -> dict:
        total, enabled = self.session.execute(
            select(
                func.count(MaintenanceRule.id),
                func.coalesce(func.sum(MaintenanceRule.enabled), 0),
            )
        ).one()
        return {"total": total, "enabled": enabled, "disabled": total - enabled}

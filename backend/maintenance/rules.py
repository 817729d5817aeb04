"""Rule management: validated CRUD, scheduler sync and dry-run previews.

Everything that reaches the database has been through validate_rule():
criteria are parsed into the typed tree for the rule's media type and the
schedule is checked as a crontab expression, so a saved rule can always
be evaluated.
"""

import json
import logging
from datetime import UTC, datetime

from db.models.maintenance import ActionType, MediaType
from db.repositories.rules import RuleRepository
from error_handler import NotFoundError, RuleValidationError
from maintenance.aggregator import MediaAggregator
from maintenance.collaborators import Collaborators, get_collaborators
from maintenance.criteria import dump_criteria, parse_criteria
from maintenance.scanner import match_items
from maintenance.scheduler import get_scan_scheduler, parse_schedule

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
PREVIEW_LIMIT = 100


def validate_rule(data: dict, existing: dict = None) -> dict:
    """Check a create/update payload and return normalised column values.

    For updates, fields missing from data keep their existing values, but
    criteria are re-validated whenever the media type changes.

    Raises:
        RuleValidationError: listing every problem found.
    """
    if not isinstance(data, dict):
        raise RuleValidationError("Rule payload must be a JSON object")

    merged = dict(existing or {})
    merged.update({k: v for k, v in data.items() if k != "id"})
    errors = []

    name = merged.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append({"loc": "name", "message": "name is required"})
    elif len(name) > MAX_NAME_LENGTH:
        errors.append({"loc": "name", "message": f"name must be at most {MAX_NAME_LENGTH} characters"})

    media_type = merged.get("media_type")
    if media_type not in {m.value for m in MediaType}:
        errors.append({"loc": "media_type",
                       "message": f"media_type must be one of {[m.value for m in MediaType]}"})
        media_type = None

    action_type = merged.get("action_type", ActionType.FLAG_FOR_REVIEW.value)
    if action_type not in {a.value for a in ActionType}:
        errors.append({"loc": "action_type",
                       "message": f"action_type must be one of {[a.value for a in ActionType]}"})

    for flag in ("enabled", "delete_files"):
        if flag in merged and not isinstance(merged[flag], bool):
            errors.append({"loc": flag, "message": f"{flag} must be true or false"})

    criteria = None
    if merged.get("criteria") is None:
        errors.append({"loc": "criteria", "message": "criteria is required"})
    elif media_type is not None:
        try:
            criteria = dump_criteria(parse_criteria(merged["criteria"], media_type))
        except RuleValidationError as exc:
            if exc.errors:
                errors.extend({"loc": f"criteria.{e['loc']}".rstrip("."), "message": e["message"]}
                              for e in exc.errors)
            else:
                errors.append({"loc": "criteria", "message": str(exc)})

    schedule = merged.get("schedule") or None
    if schedule is not None:
        try:
            parse_schedule(schedule)
        except RuleValidationError as exc:
            errors.extend(exc.errors)

    if errors:
        raise RuleValidationError("Invalid rule", errors=errors)

    return {
        "name": name.strip(),
        "description": merged.get("description"),
        "media_type": media_type,
        "action_type": action_type,
        "criteria_json": json.dumps(criteria),
        "enabled": merged.get("enabled", True),
        "delete_files": merged.get("delete_files", True),
        "schedule": schedule.strip() if schedule else None,
    }


def _sync_scheduler(rule: dict) -> dict:
    get_scan_scheduler().sync_rule(rule)
    return RuleRepository().get_rule(rule["id"])


def create_rule(data: dict) -> dict:
    values = validate_rule(data)
    rule = RuleRepository().create_rule(**values)
    logger.info("Created rule %d '%s' (%s, %s)", rule["id"], rule["name"],
                rule["media_type"], rule["action_type"])
    return _sync_scheduler(rule)


def get_rule(rule_id: int) -> dict:
    rule = RuleRepository().get_rule(rule_id)
    if rule is None:
        raise NotFoundError(f"Rule {rule_id} not found", context={"rule_id": rule_id})
    return rule


def list_rules() -> list[dict]:
    """All rules with their latest scan summary and lifetime scan count."""
    return RuleRepository().get_rules_with_scan_summary()


def update_rule(rule_id: int, data: dict) -> dict:
    existing = get_rule(rule_id)
    values = validate_rule(data, existing=existing)
    rule = RuleRepository().update_rule(rule_id, **values)
    logger.info("Updated rule %d '%s'", rule_id, rule["name"])
    return _sync_scheduler(rule)


def toggle_rule(rule_id: int, enabled: bool) -> dict:
    """Enable or disable a rule. Existing scans and candidates are kept."""
    if not isinstance(enabled, bool):
        raise RuleValidationError("enabled must be true or false",
                                  errors=[{"loc": "enabled", "message": "expected a boolean"}])
    get_rule(rule_id)
    rule = RuleRepository().update_rule(rule_id, enabled=enabled)
    logger.info("Rule %d %s", rule_id, "enabled" if enabled else "disabled")
    return _sync_scheduler(rule)


def delete_rule(rule_id: int) -> None:
    if not RuleRepository().delete_rule(rule_id):
        raise NotFoundError(f"Rule {rule_id} not found", context={"rule_id": rule_id})
    get_scan_scheduler().unregister(rule_id)


def preview_rule(rule_id: int = None, draft: dict = None, collaborators: Collaborators = None,
                 limit: int = PREVIEW_LIMIT) -> dict:
    """Evaluate a saved rule or an unsaved draft without writing anything."""
    if rule_id is not None:
        rule = get_rule(rule_id)
        media_type, criteria_data = rule["media_type"], rule["criteria"]
    else:
        values = validate_rule(draft or {})
        media_type, criteria_data = values["media_type"], json.loads(values["criteria_json"])

    criteria = parse_criteria(criteria_data, media_type)
    aggregation = MediaAggregator(collaborators or get_collaborators()).build(media_type)
    matches, skipped, protected = match_items(aggregation.items, criteria, datetime.now(UTC))

    return {
        "media_type": media_type,
        "items_scanned": len(aggregation.items),
        "items_matched": len(matches),
        "items_skipped": skipped,
        "items_protected": protected,
        "sources": aggregation.sources,
        "matches": [
            {"title_key": item.title_key, "reasons": reasons, **item.snapshot()}
            for item, reasons in matches[:limit]
        ],
        "truncated": len(matches) > limit,
    }

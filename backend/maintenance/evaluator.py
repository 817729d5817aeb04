"""Rule evaluation against aggregated media items.

evaluate() is a pure function of (item, criteria, now): the scan passes
its start time so a re-run over the same data yields the same matches.
Criteria are expected to come from parse_criteria(), so field names,
operators and value types are already checked.
"""

import functools
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from error_handler import EvaluationError
from maintenance.criteria import Condition, ConditionGroup
from maintenance.fields import SIZE_UNITS, TIME_UNITS, FieldType, get_field
from maintenance.media import MediaItem


@dataclass
class EvaluationResult:
    matched: bool
    reasons: list[str] = field(default_factory=list)


def evaluate(item: MediaItem, criteria: ConditionGroup, now: datetime = None) -> EvaluationResult:
    """Evaluate a criteria tree for one item.

    Returns:
        EvaluationResult; reasons list the conditions that made the item match.

    Raises:
        EvaluationError: if an attribute could not be read or compared.
    """
    now = _aware(now or datetime.now(UTC))
    try:
        matched, reasons = _eval_node(item, criteria, now)
    except EvaluationError:
        raise
    except (TypeError, ValueError, AttributeError, re.error) as exc:
        raise EvaluationError(
            f"could not evaluate '{item.title}': {exc}",
            context={"title_key": item.title_key},
        ) from exc
    return EvaluationResult(matched=matched, reasons=reasons if matched else [])


def _eval_node(item, node, now) -> tuple[bool, list[str]]:
    if isinstance(node, Condition):
        ok = _eval_condition(item, node, now)
        return ok, [describe_condition(node)] if ok else []

    results = [_eval_node(item, child, now) for child in node.conditions]
    if node.operator == "NOT":
        ok, _ = results[0]
        return (not ok), ([f"NOT ({describe_node(node.conditions[0])})"] if not ok else [])
    if node.operator == "OR":
        reasons = [r for ok, rs in results if ok for r in rs]
        return any(ok for ok, _ in results), reasons
    reasons = [r for _, rs in results for r in rs]
    return all(ok for ok, _ in results), reasons


def _eval_condition(item: MediaItem, cond: Condition, now: datetime) -> bool:
    definition = get_field(cond.field)
    if definition is None:
        raise EvaluationError(f"unknown field '{cond.field}'")
    actual = definition.read(item, now)
    op = cond.operator

    if op == "is_null":
        return actual is None
    if op == "not_null":
        return actual is not None
    if actual is None:
        # A title that was never watched counts as "not watched for N days"
        return cond.field == "last_watched_at" and op == "older_than"

    ftype = definition.type
    if ftype is FieldType.NUMBER:
        return _compare_number(actual, op, cond.value, SIZE_UNITS.get(cond.value_unit, 1))
    if ftype is FieldType.DATE:
        return _compare_date(_aware(actual), op, cond.value, cond.value_unit, now)
    if ftype is FieldType.BOOLEAN:
        return (bool(actual) == cond.value) == (op == "equals")
    if ftype is FieldType.ARRAY:
        return _compare_array(actual, op, cond.value)
    return _compare_string(str(actual), op, cond.value)


def _compare_number(actual, op, value, factor) -> bool:
    if op == "between":
        return value[0] * factor <= actual <= value[1] * factor
    if op in ("in", "not_in"):
        found = actual in [v * factor for v in value]
        return found if op == "in" else not found
    target = value * factor
    if op == "equals":
        return actual == target
    if op == "not_equals":
        return actual != target
    if op == "greater_than":
        return actual > target
    if op == "greater_than_or_equal":
        return actual >= target
    if op == "less_than":
        return actual < target
    if op == "less_than_or_equal":
        return actual <= target
    raise EvaluationError(f"unsupported number operator '{op}'")


def _compare_date(actual, op, value, unit, now) -> bool:
    if op in ("older_than", "newer_than"):
        cutoff = now - timedelta(days=value * TIME_UNITS[unit or "days"])
        return actual < cutoff if op == "older_than" else actual >= cutoff
    if op == "before":
        return actual < value
    if op == "after":
        return actual > value
    if op == "between":
        return value[0] <= actual <= value[1]
    raise EvaluationError(f"unsupported date operator '{op}'")


def _compare_string(actual: str, op, value) -> bool:
    if op == "regex":
        return _compiled(value).search(actual) is not None
    text = actual.casefold()
    if op in ("in", "not_in"):
        found = text in {v.casefold() for v in value}
        return found if op == "in" else not found
    target = value.casefold()
    if op == "equals":
        return text == target
    if op == "not_equals":
        return text != target
    if op == "contains":
        return target in text
    if op == "not_contains":
        return target not in text
    if op == "starts_with":
        return text.startswith(target)
    if op == "ends_with":
        return text.endswith(target)
    raise EvaluationError(f"unsupported string operator '{op}'")


def _compare_array(actual, op, value) -> bool:
    items = {str(v).casefold() for v in actual}
    if op == "is_empty":
        return not items
    if op == "is_not_empty":
        return bool(items)
    if op == "contains":
        return value.casefold() in items
    if op == "not_contains":
        return value.casefold() not in items
    wanted = {v.casefold() for v in value}
    if op == "contains_any":
        return bool(items & wanted)
    if op == "contains_all":
        return wanted <= items
    raise EvaluationError(f"unsupported array operator '{op}'")


@functools.lru_cache(maxsize=256)
def _compiled(pattern: str):
    return re.compile(pattern, re.IGNORECASE)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


# ---- Human-readable reasons --------------------------------------------------


def _format_value(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, list):
        return ", ".join(_format_value(v) for v in value)
    return str(value)


def describe_condition(cond: Condition) -> str:
    definition = get_field(cond.field)
    label = definition.label if definition else cond.field
    op = cond.operator.replace("_", " ")
    if cond.value is None:
        return f"{label} {op}"
    text = f"{label} {op} {_format_value(cond.value)}"
    return f"{text} {cond.value_unit}" if cond.value_unit else text


def describe_node(node) -> str:
    if isinstance(node, Condition):
        return describe_condition(node)
    joiner = f" {node.operator} " if node.operator != "NOT" else ""
    inner = joiner.join(describe_node(child) for child in node.conditions)
    return f"NOT ({inner})" if node.operator == "NOT" else f"({inner})"

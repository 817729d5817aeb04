"""Typed rule criteria: condition leaves and AND/OR/NOT groups.

Criteria arrive as JSON from the API or the database and are parsed into
pydantic models here. Parsing checks every condition against the field
registry for the rule's media type, normalises operator and field names
and converts values to Python types (numbers, datetimes, lists), so the
evaluator works on validated data only.

Older flat payloads ({"neverWatched": true, "maxPlayCount": 0, ...}) are
migrated to the tree form before validation.
"""

import json
import re
import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from error_handler import RuleValidationError
from maintenance.fields import (
    FIELD_ALIASES,
    RESOLUTIONS,
    SIZE_UNITS,
    TIME_UNITS,
    FieldDef,
    FieldType,
    get_field,
)

NO_VALUE_OPERATORS = frozenset({"is_null", "not_null", "is_empty", "is_not_empty"})
LIST_OPERATORS = frozenset({"in", "not_in", "contains_any", "contains_all"})
AGE_OPERATORS = frozenset({"older_than", "newer_than"})

_OPERATOR_ALIASES = {"null": "is_null", "isNull": "is_null"}
_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

LEGACY_KEYS = frozenset({
    "neverWatched", "lastWatchedBefore", "maxPlayCount", "addedBefore",
    "minFileSize", "maxQuality", "maxRating", "libraryIds", "tags",
})


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _normalize_operator(op: str) -> str:
    if op in _OPERATOR_ALIASES:
        return _OPERATOR_ALIASES[op]
    return _CAMEL.sub("_", op).lower()


# ---- Value coercion ----------------------------------------------------------


def _number(value) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"expects a number, got {value!r}")
    return value


def _text(value) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"expects text, got {value!r}")
    return str(value)


def _datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValueError(f"expects an ISO-8601 date, got {value!r}") from None
    else:
        raise ValueError(f"expects an ISO-8601 date, got {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _non_empty_list(value, item) -> list:
    if not isinstance(value, (list, tuple)) or not value:
        raise ValueError("expects a non-empty list")
    return [item(v) for v in value]


def _pair(value, item) -> list:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError("'between' expects a [low, high] pair")
    low, high = item(value[0]), item(value[1])
    if low > high:
        raise ValueError("'between' expects low <= high")
    return [low, high]


def normalize_value(definition: FieldDef, operator: str, value: Any, unit: str | None):
    """Validate and coerce a condition's value for its field type and operator.

    Returns:
        (value, unit) with the value converted to its Python type.
    """
    if operator in NO_VALUE_OPERATORS:
        return None, None

    ftype = definition.type

    if ftype is FieldType.BOOLEAN:
        if not isinstance(value, bool):
            raise ValueError(f"expects true or false, got {value!r}")
        return value, None

    if ftype is FieldType.NUMBER:
        if unit is not None and (not definition.size or unit not in SIZE_UNITS):
            raise ValueError(f"unit '{unit}' is not valid for field '{definition.name}'")
        if operator == "between":
            return _pair(value, _number), unit
        if operator in LIST_OPERATORS:
            return _non_empty_list(value, _number), unit
        return _number(value), unit

    if ftype is FieldType.DATE:
        if operator in AGE_OPERATORS:
            amount = _number(value)
            if amount < 0:
                raise ValueError("age must not be negative")
            unit = unit or "days"
            if unit not in TIME_UNITS:
                raise ValueError(f"unit must be one of {sorted(TIME_UNITS)}")
            return amount, unit
        if operator == "between":
            return _pair(value, _datetime), None
        return _datetime(value), None

    if ftype is FieldType.STRING:
        if operator in LIST_OPERATORS:
            return _non_empty_list(value, _text), None
        text = _text(value)
        if operator == "regex":
            try:
                re.compile(text)
            except re.error as exc:
                raise ValueError(f"invalid regular expression: {exc}") from None
        return text, None

    # ARRAY
    if operator in LIST_OPERATORS:
        return _non_empty_list(value, _text), None
    return _text(value), None


# ---- Models ------------------------------------------------------------------


class Condition(BaseModel):
    """Leaf predicate: <field> <operator> <value> [unit]."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["condition"] = "condition"
    id: str = Field(default_factory=_new_id)
    field: str
    operator: str
    value: Any = None
    value_unit: str | None = Field(default=None, alias="valueUnit")

    @field_validator("field", mode="before")
    @classmethod
    def _canonical_field(cls, value):
        if not isinstance(value, str) or not value:
            raise ValueError("field is required")
        return FIELD_ALIASES.get(value, value)

    @field_validator("operator", mode="before")
    @classmethod
    def _canonical_operator(cls, value):
        if not isinstance(value, str) or not value:
            raise ValueError("operator is required")
        return _normalize_operator(value)

    @model_validator(mode="after")
    def _check_against_registry(self, info: ValidationInfo):
        definition = get_field(self.field)
        if definition is None:
            raise ValueError(f"unknown field '{self.field}'")
        media_type = (info.context or {}).get("media_type")
        if media_type and media_type not in definition.media_types:
            raise ValueError(f"field '{self.field}' is not available for {media_type}")
        if self.operator not in definition.operators:
            raise ValueError(
                f"operator '{self.operator}' is not valid for {definition.type.value} "
                f"field '{self.field}'"
            )
        self.value, self.value_unit = normalize_value(
            definition, self.operator, self.value, self.value_unit
        )
        return self


def _node_kind(node) -> str:
    if isinstance(node, dict):
        return node.get("type") or ("group" if "conditions" in node else "condition")
    return getattr(node, "type", "condition")


CriteriaNode = Annotated[
    Union[
        Annotated[Condition, Tag("condition")],
        Annotated["ConditionGroup", Tag("group")],
    ],
    Discriminator(_node_kind),
]


class ConditionGroup(BaseModel):
    """AND/OR over any number of children, NOT over exactly one."""

    type: Literal["group"] = "group"
    id: str = Field(default_factory=_new_id)
    operator: Literal["AND", "OR", "NOT"] = "AND"
    conditions: list[CriteriaNode] = Field(default_factory=list)

    @field_validator("operator", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_children(self):
        if not self.conditions:
            raise ValueError("group must contain at least one condition")
        if self.operator == "NOT" and len(self.conditions) != 1:
            raise ValueError("NOT group must contain exactly one condition")
        return self

    def iter_conditions(self):
        for node in self.conditions:
            if isinstance(node, ConditionGroup):
                yield from node.iter_conditions()
            else:
                yield node


ConditionGroup.model_rebuild()


# ---- Legacy migration --------------------------------------------------------


def is_legacy_criteria(data: dict) -> bool:
    return "type" not in data and "conditions" not in data and bool(LEGACY_KEYS & data.keys())


def migrate_legacy_criteria(legacy: dict) -> dict:
    """Convert a flat criteria object into an equivalent condition group."""
    conditions = []

    def add(field, operator, value, unit=None):
        node = {"type": "condition", "id": _new_id(), "field": field,
                "operator": operator, "value": value}
        if unit:
            node["value_unit"] = unit
        conditions.append(node)

    if legacy.get("neverWatched") is not None:
        add("never_watched", "equals", legacy["neverWatched"])
    if legacy.get("lastWatchedBefore"):
        age = legacy["lastWatchedBefore"]
        add("last_watched_at", "older_than", age.get("value"), age.get("unit", "days"))
    if legacy.get("maxPlayCount") is not None:
        add("play_count", "less_than_or_equal", legacy["maxPlayCount"])
    if legacy.get("addedBefore"):
        age = legacy["addedBefore"]
        add("added_at", "older_than", age.get("value"), age.get("unit", "days"))
    if legacy.get("minFileSize"):
        size = legacy["minFileSize"]
        add("file_size", "greater_than_or_equal", size.get("value"), size.get("unit", "MB"))
    if legacy.get("maxQuality"):
        quality = str(legacy["maxQuality"]).lower()
        if quality in RESOLUTIONS:
            allowed = list(RESOLUTIONS[:RESOLUTIONS.index(quality) + 1])
        else:
            allowed = [quality]
        add("resolution", "in", allowed)
    if legacy.get("maxRating") is not None:
        add("rating", "less_than_or_equal", legacy["maxRating"])
    if legacy.get("libraryIds"):
        add("library_id", "in", [str(v) for v in legacy["libraryIds"]])
    if legacy.get("tags"):
        add("labels", "contains_any", list(legacy["tags"]))

    if not conditions:
        add("never_watched", "equals", True)

    return {
        "type": "group",
        "id": _new_id(),
        "operator": legacy.get("operator") or "AND",
        "conditions": conditions,
    }


# ---- Boundary ----------------------------------------------------------------


def _error_loc(loc: tuple) -> str:
    # Drop the union tag segments pydantic inserts ("condition", "group")
    return ".".join(str(p) for p in loc if p not in ("condition", "group"))


def parse_criteria(data, media_type: str = None) -> ConditionGroup:
    """Parse and validate criteria for a media type.

    Raises:
        RuleValidationError: with one entry per invalid node.
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise RuleValidationError(f"criteria is not valid JSON: {exc}") from exc
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    if not isinstance(data, dict):
        raise RuleValidationError("criteria must be an object")

    if is_legacy_criteria(data):
        data = migrate_legacy_criteria(data)
    if _node_kind(data) == "condition":
        data = {"type": "group", "operator": "AND", "conditions": [data]}

    try:
        return ConditionGroup.model_validate(data, context={"media_type": media_type})
    except ValidationError as exc:
        errors = [
            {"loc": _error_loc(err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise RuleValidationError("Invalid rule criteria", errors=errors) from exc


def dump_criteria(criteria: ConditionGroup) -> dict:
    """JSON-safe form of a parsed tree (the representation stored on the rule)."""
    return criteria.model_dump(mode="json")

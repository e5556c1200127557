"""Data validation rules.

A rule is one of four closed variants discriminated by ``kind``; each variant
carries exactly the parameters it needs. ``apply_rules`` returns the messages of
the rules a record fails (empty list == valid).
"""
import operator
import re
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str = ""

    def error(self) -> str:
        return self.message or f"{self.kind} rule failed for '{self.field}'"


class RangeRule(_Rule):
    kind: Literal["RANGE"] = "RANGE"
    min: float
    max: float

    @model_validator(mode="after")
    def _ordered(self):
        if self.min > self.max:
            raise ValueError(f"RANGE min {self.min} exceeds max {self.max}")
        return self

    def check(self, value: Any, record: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return self.min <= value <= self.max


class RequiredRule(_Rule):
    kind: Literal["REQUIRED"] = "REQUIRED"

    def check(self, value: Any, record: Any) -> bool:
        return value is not None and value != ""


class FormatRule(_Rule):
    kind: Literal["FORMAT"] = "FORMAT"
    pattern: str

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid pattern: {e}") from e
        return value

    def check(self, value: Any, record: Any) -> bool:
        if not isinstance(value, str):
            return False
        return re.search(self.pattern, value) is not None


class LogicalRule(_Rule):
    """Compares ``field`` against another field of the same record."""
    kind: Literal["LOGICAL"] = "LOGICAL"
    operator: Literal["<", "<=", ">", ">=", "==", "!="]
    other_field: str

    def check(self, value: Any, record: Any) -> bool:
        other = getattr(record, self.other_field, None)
        # Nothing to compare against is not a violation
        if value is None or other is None:
            return True
        return bool(_OPERATORS[self.operator](value, other))


ValidationRule = Annotated[
    Union[RangeRule, RequiredRule, FormatRule, LogicalRule],
    Field(discriminator="kind"),
]

_rules_adapter = TypeAdapter(list[ValidationRule])


def parse_rules(raw: list[dict]) -> list[ValidationRule]:
    """Build typed rules from plain dicts (e.g. loaded from a config file)."""
    return _rules_adapter.validate_python(raw)


def apply_rules(record: Any, rules: list[ValidationRule]) -> list[str]:
    failures = []
    for rule in rules:
        value = getattr(record, rule.field, None)
        if not rule.check(value, record):
            failures.append(rule.error())
    return failures


DEFAULT_ECONOMIC_RULES: list[ValidationRule] = [
    RequiredRule(field="actual", message="Actual value is required"),
    RangeRule(field="actual", min=-1000, max=1_000_000, message="Actual value out of reasonable range"),
]

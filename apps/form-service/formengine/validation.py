"""Compile a form schema into a validator.

Validation runs in two passes over a snapshot:

1. a pydantic model built from the schema checks each field's type and its
   unconditional rules; nested groups become nested models;
2. rules carrying a ``condition`` are checked afterwards against the whole
   snapshot, because whether they apply depends on other fields.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Type

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, StrictBool, StrictStr, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from formengine.errors import SchemaShapeError
from formengine.models import FieldConfig, GroupConfig, ValidationCondition, ValidationRule, is_field_config
from formengine.paths import MISSING, SchemaItems, get_value_by_path, join_path
from formengine.visibility import strictly_equal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionalRuleTarget:
    field_path: str
    parent_path: str
    rule: ValidationRule
    # The field or one of its groups can be hidden, which unregisters it.
    gated: bool = False


@dataclass
class ValidationResult:
    valid: bool
    errors: Dict[str, str] = field(default_factory=dict)
    data: Optional[Dict[str, Any]] = None


class Validator:
    def __init__(
        self,
        model: Type[BaseModel],
        conditional_rules: List[ConditionalRuleTarget],
        fields: SchemaItems = (),
    ):
        self.model = model
        self.conditional_rules = conditional_rules
        self.fields = fields

    def validate(self, snapshot: Mapping[str, Any]) -> ValidationResult:
        errors: Dict[str, str] = {}
        data: Optional[Dict[str, Any]] = None

        try:
            parsed = self.model.model_validate(_with_required_groups(self.fields, snapshot))
        except PydanticValidationError as exc:
            for error in exc.errors():
                path = ".".join(str(segment) for segment in error["loc"])
                errors.setdefault(path, error["msg"])
        else:
            data = parsed.model_dump(by_alias=True, exclude_unset=True)

        conditional_errors: Dict[str, str] = {}
        for target in self.conditional_rules:
            condition = target.rule.condition
            if condition is None or not evaluate_condition(snapshot, condition, target.parent_path):
                continue
            value = get_value_by_path(snapshot, target.field_path)
            if target.gated and value is MISSING:
                continue
            if not check_rule_value(value, target.rule):
                conditional_errors[target.field_path] = target.rule.message

        for path, message in conditional_errors.items():
            errors.setdefault(path, message)

        if errors:
            return ValidationResult(valid=False, errors=errors)
        return ValidationResult(valid=True, data=data)


def build_validator(fields: SchemaItems) -> Validator:
    conditional_rules: List[ConditionalRuleTarget] = []
    model = _build_group_model(fields, "", conditional_rules)
    logger.debug("Built validator with %d conditional rules", len(conditional_rules))
    return Validator(model, conditional_rules, fields)


def evaluate_condition(snapshot: Any, condition: ValidationCondition, parent_path: str) -> bool:
    """Check a rule condition; the field is read as an absolute path first,
    then relative to the rule owner's group."""
    value = get_value_by_path(snapshot, condition.field)
    if value is MISSING:
        relative_path = join_path(parent_path, condition.field)
        if relative_path != condition.field:
            value = get_value_by_path(snapshot, relative_path)

    matched = strictly_equal(value, condition.value)
    return matched if condition.operator == "equals" else not matched


def check_rule_value(value: Any, rule: ValidationRule) -> bool:
    if rule.type == "required":
        if isinstance(value, str):
            return len(value.strip()) > 0
        if isinstance(value, bool):
            return value is True
        return value is not None and value is not MISSING

    if rule.type in ("minLength", "maxLength"):
        if not isinstance(value, str) or not _is_number(rule.value):
            return True
        if rule.type == "minLength":
            return len(value) >= rule.value
        return len(value) <= rule.value

    if rule.type in ("pattern", "custom"):
        if not isinstance(value, str) or not isinstance(rule.value, str):
            return True
        return re.search(rule.value, value) is not None

    return True


def is_field_optional(item: FieldConfig) -> bool:
    if item.show_when is not None or item.visibility_condition is not None:
        return True
    unconditional = [rule for rule in item.validations or [] if rule.condition is None]
    if any(rule.type == "required" for rule in unconditional):
        return False
    return not (item.type == "checkbox" and unconditional)


def _with_required_groups(items: SchemaItems, snapshot: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``snapshot`` where every group that cannot be hidden is present.

    A missing group validates as empty, so its fields report their own errors
    under their own paths.
    """
    data = dict(snapshot)
    for item in items:
        if is_field_config(item) or item.show_when is not None:
            continue
        value = data.get(item.id, MISSING)
        if value is MISSING:
            data[item.id] = _with_required_groups(item.fields, {})
        elif isinstance(value, Mapping):
            data[item.id] = _with_required_groups(item.fields, value)
    return data


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _model_name(path: str) -> str:
    return "FormData_" + re.sub(r"\W", "_", path) if path else "FormData"


def _build_group_model(
    items: SchemaItems,
    parent_path: str,
    conditional_rules: List[ConditionalRuleTarget],
    gated: bool = False,
) -> Type[BaseModel]:
    definitions: Dict[str, Tuple[Any, Any]] = {}

    for index, item in enumerate(items):
        item_path = join_path(parent_path, item.id)
        name = f"field_{index}"
        if is_field_config(item):
            annotation = _field_annotation(item, item_path, parent_path, conditional_rules, gated)
            if is_field_optional(item):
                definitions[name] = (Optional[annotation], Field(default=None, alias=item.id))
            else:
                definitions[name] = (annotation, Field(alias=item.id))
        else:
            definitions[name] = _group_definition(item, item_path, conditional_rules, gated)

    return create_model(
        _model_name(parent_path),
        __config__=ConfigDict(extra="ignore", populate_by_name=False),
        **definitions,
    )


def _group_definition(
    group: GroupConfig,
    group_path: str,
    conditional_rules: List[ConditionalRuleTarget],
    gated: bool,
) -> Tuple[Any, Any]:
    gated = gated or group.show_when is not None
    nested = _build_group_model(group.fields, group_path, conditional_rules, gated)
    if group.show_when is not None:
        return Optional[nested], Field(default=None, alias=group.id)
    return nested, Field(alias=group.id)


def _field_annotation(
    item: FieldConfig,
    item_path: str,
    parent_path: str,
    conditional_rules: List[ConditionalRuleTarget],
    gated: bool = False,
) -> Any:
    base, kind = _base_type(item)
    gated = gated or item.show_when is not None or item.visibility_condition is not None
    validators: List[Any] = []

    for index, rule in enumerate(item.validations or []):
        if rule.type in ("pattern", "custom"):
            _check_pattern(rule, f"{item_path}.validations[{index}]")
        if rule.condition is not None:
            conditional_rules.append(ConditionalRuleTarget(item_path, parent_path, rule, gated))
            continue
        validator = _rule_validator(rule, kind)
        if validator is not None:
            validators.append(validator)

    if not validators:
        return base
    return Annotated[(base, *validators)]


def _base_type(item: FieldConfig) -> Tuple[Any, str]:
    if item.type == "checkbox":
        return StrictBool, "boolean"
    if item.type in ("select", "radio") and item.options:
        values = tuple(option.value for option in item.options)
        return Literal[values], "enum"
    return StrictStr, "string"


def _rule_validator(rule: ValidationRule, kind: str) -> Any:
    if kind == "enum":
        # Only "required" applies to a choice; it runs before the option check
        # so an empty selection reports the rule message.
        if rule.type != "required":
            return None

        def check_selected(value: Any) -> Any:
            if value is None or value == "":
                raise PydanticCustomError(rule.type, rule.message)
            return value

        return BeforeValidator(check_selected)
    if kind == "boolean" and rule.type != "required":
        return None

    def check(value: Any) -> Any:
        if rule.type == "required":
            passed = value is True if kind == "boolean" else len(value) >= 1
        else:
            passed = check_rule_value(value, rule)
        if not passed:
            raise PydanticCustomError(rule.type, rule.message)
        return value

    return AfterValidator(check)


def _check_pattern(rule: ValidationRule, path: str) -> None:
    if not isinstance(rule.value, str):
        return
    try:
        re.compile(rule.value)
    except re.error as exc:
        raise SchemaShapeError(f"{path}: Invalid pattern {rule.value!r}: {exc}", path=path) from exc

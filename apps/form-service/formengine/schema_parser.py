import json
import logging
from typing import Any, Dict, List, Sequence, Set

from pydantic import ValidationError as PydanticValidationError

from formengine.errors import SchemaShapeError, SchemaSyntaxError
from formengine.models import FIELD_TYPES, GROUP_TYPE, VALIDATION_TYPES, FormSchema

logger = logging.getLogger(__name__)

_CHOICE_TYPES = ("select", "radio")
_DISCRIMINATOR_TAGS = set(FIELD_TYPES) | {GROUP_TYPE}


def parse_form_schema(text: str) -> FormSchema:
    """Parse schema JSON text and check its structure.

    Checks run depth-first, left to right; the first problem found is raised
    with the path of the offending item (``fields[1].fields[0]: ...``).
    """
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise SchemaSyntaxError(f"Invalid JSON syntax: {exc}") from exc

    if not isinstance(parsed, dict):
        raise SchemaShapeError("Schema must be a JSON object")

    if not isinstance(parsed.get("title"), str):
        raise SchemaShapeError('Schema must have a "title" field (string)', path="title")

    fields = parsed.get("fields")
    if not isinstance(fields, list):
        raise SchemaShapeError('Schema must have a "fields" array', path="fields")

    if not fields:
        raise SchemaShapeError("Schema must have at least one field", path="fields")

    seen_ids: Set[str] = set()
    _validate_items(fields, "fields", seen_ids)

    try:
        schema = FormSchema.model_validate(parsed)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        path = _format_loc(first["loc"])
        raise SchemaShapeError(f"{path}: {first['msg']}", path=path) from exc

    logger.info("Parsed form schema %r with %d ids", schema.title, len(seen_ids))
    return schema


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return False
    return True


def _validate_items(items: List[Any], path: str, seen_ids: Set[str]) -> None:
    for index, item in enumerate(items):
        current_path = f"{path}[{index}]"

        if not isinstance(item, dict):
            raise SchemaShapeError(f"{current_path}: Must be an object", path=current_path)

        item_id = item.get("id")
        if not isinstance(item_id, str):
            raise SchemaShapeError(f'{current_path}: Missing or invalid "id" field', path=current_path)
        if not item_id.strip():
            raise SchemaShapeError(f'{current_path}: Field "id" cannot be empty', path=current_path)
        if item_id in seen_ids:
            raise SchemaShapeError(
                f'Duplicate field ID "{item_id}" found at {current_path}', path=current_path
            )
        seen_ids.add(item_id)

        item_type = item.get("type")
        if not isinstance(item_type, str):
            raise SchemaShapeError(f'{current_path}: Missing or invalid "type" field', path=current_path)

        if item_type == GROUP_TYPE:
            if not isinstance(item.get("title"), str):
                raise SchemaShapeError(f'{current_path}: Group must have a "title" field', path=current_path)
            if not isinstance(item.get("fields"), list):
                raise SchemaShapeError(f'{current_path}: Group must have a "fields" array', path=current_path)
            _validate_show_when(item, current_path)
            _validate_auto_fill(item, current_path)
            _validate_items(item["fields"], f"{current_path}.fields", seen_ids)
            continue

        if not isinstance(item.get("label"), str):
            raise SchemaShapeError(f'{current_path}: Field must have a "label"', path=current_path)

        if item_type not in FIELD_TYPES:
            raise SchemaShapeError(
                f'{current_path}: Invalid field type "{item_type}". Must be one of: {", ".join(FIELD_TYPES)}',
                path=current_path,
            )

        if item_type in _CHOICE_TYPES:
            _validate_options(item, item_type, current_path)

        _validate_rules(item.get("validations"), current_path)
        _validate_show_when(item, current_path)
        _validate_visibility_condition(item, current_path)
        _validate_auto_fill(item, current_path)


def _validate_options(item: Dict[str, Any], item_type: str, path: str) -> None:
    options = item.get("options")
    if not isinstance(options, list) or not options:
        raise SchemaShapeError(f'{path}: {item_type} field must have "options" array', path=path)
    for index, option in enumerate(options):
        if (
            not isinstance(option, dict)
            or not isinstance(option.get("label"), str)
            or not isinstance(option.get("value"), str)
        ):
            raise SchemaShapeError(
                f'{path}.options[{index}]: Option must have string "label" and "value"',
                path=f"{path}.options[{index}]",
            )


def _validate_rules(rules: Any, path: str) -> None:
    if rules is None:
        return
    if not isinstance(rules, list):
        raise SchemaShapeError(f'{path}: "validations" must be an array', path=path)
    for index, rule in enumerate(rules):
        rule_path = f"{path}.validations[{index}]"
        if not isinstance(rule, dict):
            raise SchemaShapeError(f"{rule_path}: Must be an object", path=rule_path)
        if rule.get("type") not in VALIDATION_TYPES:
            raise SchemaShapeError(
                f'{rule_path}: Invalid validation type "{rule.get("type")}". '
                f'Must be one of: {", ".join(VALIDATION_TYPES)}',
                path=rule_path,
            )
        if not isinstance(rule.get("message"), str):
            raise SchemaShapeError(f'{rule_path}: Validation must have a "message"', path=rule_path)
        condition = rule.get("condition")
        if condition is not None and (
            not isinstance(condition, dict)
            or not isinstance(condition.get("field"), str)
            or condition.get("operator") not in ("equals", "notEquals")
        ):
            raise SchemaShapeError(
                f'{rule_path}: "condition" needs a "field" and an "equals" or "notEquals" operator',
                path=rule_path,
            )


def _validate_show_when(item: Dict[str, Any], path: str) -> None:
    show_when = item.get("showWhen")
    if show_when is None:
        return
    if not isinstance(show_when, dict) or not isinstance(show_when.get("field"), str) or "equals" not in show_when:
        raise SchemaShapeError(f'{path}: "showWhen" needs a "field" and an "equals" value', path=path)


def _validate_visibility_condition(item: Dict[str, Any], path: str) -> None:
    condition = item.get("visibilityCondition")
    if condition is None:
        return
    if (
        not isinstance(condition, dict)
        or not isinstance(condition.get("field"), str)
        or condition.get("operator") not in ("equals", "notEquals", "contains")
        or "value" not in condition
    ):
        raise SchemaShapeError(
            f'{path}: "visibilityCondition" needs a "field", an "operator" and a "value"', path=path
        )


def _validate_auto_fill(item: Dict[str, Any], path: str) -> None:
    auto_fill = item.get("autoFill")
    if auto_fill is None:
        return
    if not isinstance(auto_fill, dict) or not isinstance(auto_fill.get("apiEndpoint"), str):
        raise SchemaShapeError(f'{path}: "autoFill" must have an "apiEndpoint"', path=path)
    for key in ("dependsOn", "targetFields"):
        refs = auto_fill.get(key)
        if not isinstance(refs, list) or not all(isinstance(ref, str) for ref in refs):
            raise SchemaShapeError(f'{path}: "autoFill.{key}" must be an array of field ids', path=path)


def _format_loc(loc: Sequence[Any]) -> str:
    parts: List[str] = []
    previous: Any = None
    for segment in loc:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif isinstance(previous, int) and segment in _DISCRIMINATOR_TAGS:
            # pydantic reports the union tag after the list index
            pass
        else:
            parts.append(f".{segment}" if parts else str(segment))
        previous = segment
    return "".join(parts)

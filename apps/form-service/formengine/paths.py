"""Dot-path helpers for schema identifiers and nested form snapshots.

Field values live in a nested dict mirroring the group tree, so the field
``city`` inside group ``address`` is stored at ``data["address"]["city"]``
and addressed as ``"address.city"``.
"""

import logging
from typing import Any, Dict, Iterator, List, MutableMapping, Sequence, Tuple, Union

from formengine.models import FieldConfig, GroupConfig, is_group_config

logger = logging.getLogger(__name__)

SchemaItems = Sequence[Union[FieldConfig, GroupConfig]]


class _Missing:
    """Marker for a path that holds no value (never registered or unregistered)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"

    def __deepcopy__(self, memo):
        return self


MISSING: Any = _Missing()


def join_path(parent_path: str, child_id: str) -> str:
    return f"{parent_path}.{child_id}" if parent_path else child_id


def split_path(path: str) -> List[str]:
    return [segment for segment in path.split(".") if segment] if path else []


def parent_of(path: str) -> str:
    head, _, _ = path.rpartition(".")
    return head


def get_value_by_path(data: Any, path: str, default: Any = MISSING) -> Any:
    """Read ``path`` from a nested mapping; a literal flat key takes precedence."""
    if not path or not isinstance(data, MutableMapping):
        return default
    if path in data:
        return data[path]

    current: Any = data
    for segment in split_path(path):
        if not isinstance(current, MutableMapping) or segment not in current:
            return default
        current = current[segment]
    return current


def set_value_by_path(data: MutableMapping[str, Any], path: str, value: Any) -> None:
    segments = split_path(path)
    if not segments:
        raise ValueError("Cannot set a value at an empty path")

    current = data
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, MutableMapping):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


def delete_value_by_path(data: MutableMapping[str, Any], path: str) -> bool:
    segments = split_path(path)
    if not segments:
        return False

    current: Any = data
    for segment in segments[:-1]:
        if not isinstance(current, MutableMapping) or segment not in current:
            return False
        current = current[segment]
    if not isinstance(current, MutableMapping) or segments[-1] not in current:
        return False
    del current[segments[-1]]
    return True


def paths_overlap(first: str, second: str) -> bool:
    """True when one path equals, contains, or is contained by the other."""
    if first == second:
        return True
    return first.startswith(second + ".") or second.startswith(first + ".")


def iter_schema_items(
    fields: SchemaItems, parent_path: str = ""
) -> Iterator[Tuple[Union[FieldConfig, GroupConfig], str, str]]:
    """Yield ``(item, path, parent_path)`` depth-first, left to right."""
    for item in fields:
        item_path = join_path(parent_path, item.id)
        yield item, item_path, parent_path
        if is_group_config(item):
            yield from iter_schema_items(item.fields, item_path)


def build_field_path_map(fields: SchemaItems) -> Dict[str, str]:
    id_to_path: Dict[str, str] = {}
    for item, item_path, _ in iter_schema_items(fields):
        id_to_path[item.id] = item_path
    return id_to_path


def resolve_reference(reference: str, scope_path: str, id_to_path: Dict[str, str]) -> str:
    """Resolve a field reference written in the schema to an absolute path.

    Dotted references are already absolute. Bare ids are looked up in the
    global id map and otherwise joined onto the declaring scope.
    """
    if "." in reference:
        return reference

    mapped = id_to_path.get(reference)
    if mapped:
        return mapped

    fallback = join_path(scope_path, reference)
    logger.warning(
        "Reference %r not found in schema; falling back to scope path %r", reference, fallback
    )
    return fallback

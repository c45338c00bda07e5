from typing import Dict, List

from formengine.models import AutoFillConfig, ResolvedAutoFillConfig, ResolvedAutoFillFieldRef, is_field_config
from formengine.paths import SchemaItems, build_field_path_map, iter_schema_items, resolve_reference


def resolve_auto_fill_configs(fields: SchemaItems) -> List[ResolvedAutoFillConfig]:
    """Resolve every ``autoFill`` declaration in the tree to absolute paths.

    A field resolves its references against its enclosing group, a group
    against itself.
    """
    id_to_path = build_field_path_map(fields)
    resolved: List[ResolvedAutoFillConfig] = []

    for item, item_path, parent_path in iter_schema_items(fields):
        if item.auto_fill is None:
            continue
        scope_path = parent_path if is_field_config(item) else item_path
        resolved.append(_resolve_config(item.auto_fill, item_path, scope_path, id_to_path))

    return resolved


def _resolve_config(
    config: AutoFillConfig, item_path: str, scope_path: str, id_to_path: Dict[str, str]
) -> ResolvedAutoFillConfig:
    return ResolvedAutoFillConfig(
        key=item_path,
        api_endpoint=config.api_endpoint,
        depends_on=[_resolve_ref(ref, scope_path, id_to_path) for ref in config.depends_on],
        target_fields=[_resolve_ref(ref, scope_path, id_to_path) for ref in config.target_fields],
    )


def _resolve_ref(reference: str, scope_path: str, id_to_path: Dict[str, str]) -> ResolvedAutoFillFieldRef:
    return ResolvedAutoFillFieldRef(key=reference, path=resolve_reference(reference, scope_path, id_to_path))

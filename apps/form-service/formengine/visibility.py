"""Conditional visibility for fields and groups.

``VisibilityTracker`` keeps the visible set of a mounted form current: it
watches only the paths that conditions reference, recomputes the visible set
when one of them changes, drops values of nodes that became hidden and
registers initial values for nodes that became visible.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from formengine.models import (
    FieldConfig,
    GroupConfig,
    ShowWhenCondition,
    VisibilityCondition,
    is_field_config,
    is_group_config,
)
from formengine.paths import MISSING, SchemaItems, get_value_by_path, iter_schema_items, join_path
from formengine.store import SnapshotStore

logger = logging.getLogger(__name__)

SchemaNode = Union[FieldConfig, GroupConfig]
TransitionCallback = Callable[[List[str], List[str]], None]


def strictly_equal(actual: Any, expected: Any) -> bool:
    """Equality without cross-type coercion: ``True`` never equals ``1``."""
    if actual is MISSING or expected is MISSING:
        return False
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    if isinstance(actual, str) != isinstance(expected, str):
        return False
    return actual == expected


def should_show(condition: Optional[ShowWhenCondition], snapshot: Any) -> bool:
    if condition is None:
        return True
    return strictly_equal(get_value_by_path(snapshot, condition.field), condition.equals)


def matches_visibility_condition(condition: Optional[VisibilityCondition], snapshot: Any) -> bool:
    if condition is None:
        return True

    actual = get_value_by_path(snapshot, condition.field)
    expected = condition.value

    if condition.operator == "contains":
        if actual is MISSING or actual is None:
            return False
        needles = expected if isinstance(expected, list) else [expected]
        if isinstance(actual, str):
            return any(needle in actual for needle in needles)
        if isinstance(actual, list):
            return any(needle in actual for needle in needles)
        return False

    if isinstance(expected, list):
        matched = any(strictly_equal(actual, option) for option in expected)
    else:
        matched = strictly_equal(actual, expected)
    return matched if condition.operator == "equals" else not matched


def is_item_visible(item: SchemaNode, snapshot: Any) -> bool:
    if not should_show(item.show_when, snapshot):
        return False
    if is_field_config(item):
        return matches_visibility_condition(item.visibility_condition, snapshot)
    return True


def condition_paths(items: Iterable[SchemaNode]) -> List[str]:
    """Distinct paths referenced by the conditions of ``items``, in order."""
    paths: List[str] = []
    for item in items:
        references = [item.show_when.field if item.show_when else None]
        if is_field_config(item) and item.visibility_condition is not None:
            references.append(item.visibility_condition.field)
        for reference in references:
            if reference and reference not in paths:
                paths.append(reference)
    return paths


def initial_value(field: FieldConfig) -> Any:
    if field.default_value is not None:
        return field.default_value
    if field.type == "checkbox":
        return False
    if field.type in ("select", "radio"):
        return None
    return ""


def compute_visible(fields: SchemaItems, snapshot: Any, parent_path: str = "") -> Dict[str, SchemaNode]:
    """Visible nodes keyed by absolute path; a hidden group hides its subtree."""
    visible: Dict[str, SchemaNode] = {}
    for item in fields:
        if not is_item_visible(item, snapshot):
            continue
        item_path = join_path(parent_path, item.id)
        visible[item_path] = item
        if is_group_config(item):
            visible.update(compute_visible(item.fields, snapshot, item_path))
    return visible


def prune_hidden(fields: SchemaItems, data: Dict[str, Any]) -> None:
    """Remove values of hidden nodes from ``data`` in place until stable."""
    store = SnapshotStore(data)
    tracker = VisibilityTracker(fields, store, register_visible=False)
    tracker.start()
    tracker.close()
    data.clear()
    data.update(store.snapshot())


class VisibilityTracker:
    def __init__(
        self,
        fields: SchemaItems,
        store: SnapshotStore,
        on_transition: Optional[TransitionCallback] = None,
        register_visible: bool = True,
    ):
        self._fields = fields
        self._store = store
        self._on_transition = on_transition
        self._register_visible = register_visible
        self._all_nodes: Dict[str, SchemaNode] = {
            path: item for item, path, _ in iter_schema_items(fields)
        }
        self._watched_paths = condition_paths(self._all_nodes.values())
        self._visible: Dict[str, SchemaNode] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._refreshing = False
        self._dirty = False

    @property
    def watched_paths(self) -> List[str]:
        return list(self._watched_paths)

    @property
    def visible_paths(self) -> List[str]:
        return list(self._visible)

    def is_visible(self, path: str) -> bool:
        return path in self._visible

    def start(self) -> None:
        """Compute the initial visible set and drop values of hidden nodes."""
        # Treat every node as visible so the first pass prunes stale values.
        self._visible = dict(self._all_nodes)
        if self._watched_paths and self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._watched_paths, self._on_dependency_change)
        self.refresh()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_dependency_change(self, changed_paths: List[str]) -> None:
        self.refresh()

    def refresh(self) -> None:
        if self._refreshing:
            self._dirty = True
            return

        self._refreshing = True
        try:
            for _ in range(len(self._all_nodes) + 1):
                self._dirty = False
                self._apply(compute_visible(self._fields, self._store.snapshot()))
                if not self._dirty:
                    break
        finally:
            self._refreshing = False

    def _apply(self, visible: Dict[str, SchemaNode]) -> None:
        removed = [path for path in self._visible if path not in visible]
        added = [path for path in visible if path not in self._visible]
        self._visible = visible

        for path in removed:
            if self._store.unregister(path):
                logger.debug("Unregistered hidden path %s", path)

        if self._register_visible:
            for path, item in visible.items():
                if is_field_config(item) and self._store.get(path) is MISSING:
                    self._store.set(path, initial_value(item))

        if (removed or added) and self._on_transition is not None:
            self._on_transition(added, removed)

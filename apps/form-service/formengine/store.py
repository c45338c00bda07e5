"""Snapshot store with path-scoped subscriptions."""

import copy
from typing import Any, Callable, Dict, Iterable, List, Optional

from formengine.paths import MISSING, delete_value_by_path, get_value_by_path, paths_overlap, set_value_by_path

ChangeCallback = Callable[[List[str]], None]


def same_value(first: Any, second: Any) -> bool:
    if first is MISSING or second is MISSING:
        return first is second
    return type(first) is type(second) and first == second


class _Subscription:
    def __init__(self, paths: Optional[List[str]], callback: ChangeCallback):
        self.paths = paths
        self.callback = callback
        self.active = True

    def watches(self, changed_path: str) -> bool:
        if self.paths is None:
            return True
        return any(paths_overlap(path, changed_path) for path in self.paths)


class SnapshotStore:
    """Owns the live form values of one mounted form.

    ``subscribe(paths, callback)`` fires only when the value at one of
    ``paths`` actually changes; ``listen(callback)`` fires on every change.
    Callbacks run synchronously and may write back into the store.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._subscriptions: List[_Subscription] = []

    def get(self, path: str, default: Any = MISSING) -> Any:
        return get_value_by_path(self._data, path, default)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def set(self, path: str, value: Any) -> bool:
        previous = self.get(path)
        if same_value(previous, value):
            return False
        self._mutate(path, lambda: set_value_by_path(self._data, path, copy.deepcopy(value)))
        return True

    def unregister(self, path: str) -> bool:
        if self.get(path) is MISSING:
            return False
        self._mutate(path, lambda: delete_value_by_path(self._data, path))
        return True

    def reset(self, data: Optional[Dict[str, Any]] = None) -> None:
        before = self._capture(subscription for subscription in self._subscriptions)
        self._data = copy.deepcopy(data) if data else {}
        self._notify(before, "")

    def subscribe(self, paths: Iterable[str], callback: ChangeCallback) -> Callable[[], None]:
        subscription = _Subscription(list(dict.fromkeys(paths)), callback)
        return self._add(subscription)

    def listen(self, callback: ChangeCallback) -> Callable[[], None]:
        return self._add(_Subscription(None, callback))

    def _add(self, subscription: _Subscription) -> Callable[[], None]:
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def _mutate(self, path: str, apply: Callable[[], Any]) -> None:
        affected = [subscription for subscription in self._subscriptions if subscription.watches(path)]
        before = self._capture(affected)
        apply()
        self._notify(before, path)

    def _capture(self, subscriptions: Iterable[_Subscription]) -> List[tuple]:
        captured = []
        for subscription in subscriptions:
            if subscription.paths is None:
                captured.append((subscription, None))
            else:
                values = {path: copy.deepcopy(self.get(path)) for path in subscription.paths}
                captured.append((subscription, values))
        return captured

    def _notify(self, captured: List[tuple], changed_path: str) -> None:
        for subscription, before in captured:
            if not subscription.active:
                continue
            if before is None:
                subscription.callback([changed_path] if changed_path else [])
                continue
            changed = [path for path, value in before.items() if not same_value(value, self.get(path))]
            if changed:
                subscription.callback(changed)

"""Best-effort draft persistence.

Drafts are stored as JSON under ``"<namespace>:<formId>"`` in a key-value
store. Nothing here raises to callers: storage failures are logged and the
form keeps working without drafts.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from formengine.errors import PersistenceError
from formengine.models import FormSchema
from formengine.store import SnapshotStore
from formengine.timers import DEFAULT_DEBOUNCE_MS, Debouncer

logger = logging.getLogger(__name__)

DRAFT_NAMESPACE = "form-draft"
FORM_ID_PREFIX = "dynamic-form"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileKeyValueStore(KeyValueStore):
    """All keys in one JSON document on disk, rewritten on every change."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Unable to read {self._path}: {exc}") from exc
        return payload if isinstance(payload, dict) else {}

    def _write(self, items: Dict[str, str]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(items), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise PersistenceError(f"Unable to write {self._path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove(self, key: str) -> None:
        items = self._read()
        if items.pop(key, None) is not None:
            self._write(items)


def _hash_string(value: str) -> str:
    hash_value = 5381
    for char in value:
        hash_value = ((hash_value * 33) & 0xFFFFFFFF) ^ ord(char)
    return _to_base36(hash_value)


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def build_form_id(schema: FormSchema) -> str:
    """Deterministic id derived from the schema content (not cryptographic)."""
    serialized = json.dumps(schema.to_json_dict(), separators=(",", ":"), ensure_ascii=False)
    return f"{FORM_ID_PREFIX}:{_hash_string(serialized)}"


class DraftStore:
    def __init__(self, kv: KeyValueStore, namespace: str = DRAFT_NAMESPACE):
        self._kv = kv
        self._namespace = namespace

    def draft_key(self, form_id: str) -> str:
        return f"{self._namespace}:{form_id}"

    def load(self, form_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self._kv.get(self.draft_key(form_id))
            if not raw:
                return None
            payload = json.loads(raw)
        except (PersistenceError, ValueError) as exc:
            logger.warning("Ignoring unreadable draft for %s: %s", form_id, exc)
            return None

        if not isinstance(payload, dict) or payload.get("formId") != form_id:
            return None
        data = payload.get("data")
        return data if isinstance(data, dict) else None

    def save(self, form_id: str, data: Dict[str, Any]) -> None:
        payload = {"formId": form_id, "data": data, "timestamp": int(time.time() * 1000)}
        try:
            self._kv.set(self.draft_key(form_id), json.dumps(payload))
        except (PersistenceError, TypeError, ValueError) as exc:
            logger.warning("Draft for %s not saved: %s", form_id, exc)

    def clear(self, form_id: str) -> None:
        try:
            self._kv.remove(self.draft_key(form_id))
        except PersistenceError as exc:
            logger.warning("Draft for %s not cleared: %s", form_id, exc)


def _serialize(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True)
    except (TypeError, ValueError):
        return ""


class DraftAutosaver:
    """Saves the snapshot as a draft once edits pause."""

    def __init__(
        self,
        form_id: str,
        store: SnapshotStore,
        drafts: DraftStore,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ):
        self.form_id = form_id
        self._store = store
        self._drafts = drafts
        self._debouncer = Debouncer(self._save, debounce_ms)
        self._last_saved = ""
        self._skip_next = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.has_draft = drafts.load(form_id) is not None

    def restore(self) -> Optional[Dict[str, Any]]:
        draft = self._drafts.load(self.form_id)
        self._last_saved = _serialize(draft) if draft is not None else ""
        return draft

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._store.listen(self._on_change)

    def close(self) -> None:
        self._debouncer.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def flush(self) -> None:
        self._debouncer.flush()

    def clear_draft(self) -> None:
        self._debouncer.cancel()
        self._skip_next = True
        self._drafts.clear(self.form_id)
        self._last_saved = ""
        self.has_draft = False

    def _on_change(self, changed_paths: Any) -> None:
        if self._skip_next:
            self._skip_next = False
            return
        snapshot = _serialize(self._store.snapshot())
        if not snapshot or snapshot == self._last_saved:
            return
        self._debouncer.trigger()

    def _save(self) -> None:
        data = self._store.snapshot()
        logger.debug("Saving draft %s", self.form_id)
        self._drafts.save(self.form_id, data)
        self._last_saved = _serialize(data)
        self.has_draft = True

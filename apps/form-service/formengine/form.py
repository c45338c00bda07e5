"""Form orchestrator: one mounted form instance and its live values."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from formengine.autofill import AutoFillEngine, AutoFillStatus
from formengine.autofill_resolver import resolve_auto_fill_configs
from formengine.config import Settings, load_settings
from formengine.models import FormSchema, is_field_config
from formengine.paths import MISSING, SchemaItems, join_path, set_value_by_path
from formengine.persistence import (
    DraftAutosaver,
    DraftStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    build_form_id,
)
from formengine.store import SnapshotStore
from formengine.timers import DEFAULT_DEBOUNCE_MS
from formengine.transport import AutoFillClient, AutoFillTransport, HttpAutoFillTransport, MockAutoFillTransport
from formengine.validation import build_validator
from formengine.visibility import VisibilityTracker, prune_hidden

logger = logging.getLogger(__name__)


class FormState(str, Enum):
    EDITING = "editing"
    VALIDATING = "validating"
    SUBMITTED = "submitted"
    INVALID = "invalid"


@dataclass
class SubmitResult:
    valid: bool
    output: Optional[Dict[str, Any]] = None
    errors: Dict[str, str] = field(default_factory=dict)


class FormSession:
    """Builds the validator and auto-fill configs for ``schema`` and drives
    user input through visibility, auto-fill, draft saving and submission.

    Call ``mount()`` from inside a running event loop when the schema
    declares auto-fill or drafts are enabled, and ``close()`` on teardown.
    """

    def __init__(
        self,
        schema: FormSchema,
        transport: Optional[AutoFillTransport] = None,
        draft_store: Optional[DraftStore] = None,
        *,
        draft_debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ):
        self.schema = schema
        self.form_id = build_form_id(schema)
        self.validator = build_validator(schema.fields)
        self.auto_fill_configs = resolve_auto_fill_configs(schema.fields)
        self.store = SnapshotStore()
        self.visibility = VisibilityTracker(schema.fields, self.store, on_transition=self._on_transition)
        self.autofill = AutoFillEngine(
            self.auto_fill_configs,
            self.store,
            transport or AutoFillClient(),
            is_visible=self.visibility.is_visible,
        )
        self._autosaver = (
            DraftAutosaver(self.form_id, self.store, draft_store, draft_debounce_ms)
            if draft_store is not None
            else None
        )
        self.state = FormState.EDITING
        self.errors: Dict[str, str] = {}
        self.output: Optional[Dict[str, Any]] = None
        self._unlisten: Optional[Callable[[], None]] = None
        self._mounted = False

    async def __aenter__(self) -> "FormSession":
        self.mount()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    @property
    def values(self) -> Dict[str, Any]:
        return self.store.snapshot()

    @property
    def has_draft(self) -> bool:
        return self._autosaver is not None and self._autosaver.has_draft

    @property
    def visible_paths(self) -> List[str]:
        return self.visibility.visible_paths

    def mount(self) -> None:
        if self._mounted:
            return
        self._mounted = True

        if self._autosaver is not None:
            draft = self._autosaver.restore()
            if draft:
                logger.info("Restored draft for %s", self.form_id)
                self.store.reset(draft)

        self.visibility.start()
        self._unlisten = self.store.listen(self._on_change)
        self.autofill.start()
        if self._autosaver is not None:
            self._autosaver.start()

    def close(self) -> None:
        if self._autosaver is not None:
            self._autosaver.close()
        self.autofill.close()
        self.visibility.close()
        if self._unlisten is not None:
            self._unlisten()
            self._unlisten = None
        self._mounted = False

    async def settle(self) -> None:
        await self.autofill.settle()

    def get_value(self, path: str) -> Any:
        value = self.store.get(path)
        return None if value is MISSING else value

    def set_value(self, path: str, value: Any) -> None:
        self.store.set(path, value)

    def is_visible(self, path: str) -> bool:
        return self.visibility.is_visible(path)

    def submit(self) -> SubmitResult:
        self.state = FormState.VALIDATING
        snapshot = self.store.snapshot()
        prune_hidden(self.schema.fields, snapshot)
        result = self.validator.validate(snapshot)

        if result.valid:
            self.errors = {}
            self.output = result.data or {}
            self.state = FormState.SUBMITTED
            logger.info("Form %s submitted", self.form_id)
            return SubmitResult(valid=True, output=self.output)

        self.errors = dict(result.errors)
        self.output = None
        self.state = FormState.INVALID
        logger.info("Form %s rejected with %d errors", self.form_id, len(self.errors))
        return SubmitResult(valid=False, errors=dict(self.errors))

    def error_for(self, path: str) -> Optional[str]:
        return self.errors.get(path)

    def nested_errors(self) -> Dict[str, Any]:
        tree: Dict[str, Any] = {}
        for path, message in self.errors.items():
            try:
                set_value_by_path(tree, path, message)
            except ValueError:
                continue
        return tree

    def autofill_status(self) -> Dict[str, AutoFillStatus]:
        return self.autofill.status()

    def dismiss_autofill_error(self, key: str) -> None:
        self.autofill.dismiss_error(key)

    def clear_draft(self) -> None:
        if self._autosaver is not None:
            self._autosaver.clear_draft()

    def render(self) -> Dict[str, Any]:
        """Visible groups and fields with their current values and errors."""
        return {
            "title": self.schema.title,
            "description": self.schema.description,
            "items": self._render_items(self.schema.fields, ""),
            "state": self.state.value,
            "output": self.output,
        }

    def _render_items(self, items: SchemaItems, parent_path: str) -> List[Dict[str, Any]]:
        statuses = self.autofill.status()
        rendered: List[Dict[str, Any]] = []
        for item in items:
            path = join_path(parent_path, item.id)
            if not self.visibility.is_visible(path):
                continue
            if is_field_config(item):
                node: Dict[str, Any] = {
                    "path": path,
                    "id": item.id,
                    "type": item.type,
                    "label": item.label,
                    "placeholder": item.placeholder,
                    "options": [option.model_dump() for option in item.options or []],
                    "value": self.get_value(path),
                    "error": self.errors.get(path),
                }
            else:
                node = {
                    "path": path,
                    "id": item.id,
                    "type": item.type,
                    "title": item.title,
                    "description": item.description,
                    "error": self.errors.get(path),
                    "items": self._render_items(item.fields, path),
                }
            status = statuses.get(path)
            if status is not None and (status.loading or status.error):
                node["autoFill"] = {"loading": status.loading, "error": status.error}
            rendered.append(node)
        return rendered

    def _on_change(self, changed_paths: List[str]) -> None:
        if self.errors or self.output is not None or self.state != FormState.EDITING:
            self.errors = {}
            self.output = None
            self.state = FormState.EDITING

    def _on_transition(self, added: List[str], removed: List[str]) -> None:
        if added:
            logger.debug("Fields shown: %s", ", ".join(added))
        if removed:
            logger.debug("Fields hidden: %s", ", ".join(removed))


def open_session(schema: FormSchema, settings: Optional[Settings] = None) -> FormSession:
    """Session wired from settings; drafts stay in memory unless ``draft_path`` is set."""
    settings = settings or load_settings()
    transport = AutoFillClient(
        mock=MockAutoFillTransport(settings.autofill_mock_delay_ms),
        http=HttpAutoFillTransport(settings.autofill_base_url, settings.autofill_http_timeout),
    )
    kv = JsonFileKeyValueStore(settings.draft_path) if settings.draft_path else InMemoryKeyValueStore()
    drafts = DraftStore(kv)
    return FormSession(schema, transport, drafts, draft_debounce_ms=settings.draft_debounce_ms)

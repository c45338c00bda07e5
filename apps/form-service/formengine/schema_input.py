import logging
from typing import Callable, Optional

from formengine.config import Settings, load_settings
from formengine.errors import SchemaError
from formengine.models import FormSchema
from formengine.schema_parser import parse_form_schema
from formengine.timers import DEFAULT_DEBOUNCE_MS, Debouncer

logger = logging.getLogger(__name__)

SchemaCallback = Callable[[Optional[FormSchema]], None]


class SchemaInput:
    """Schema text being edited; parses once typing pauses.

    ``error`` holds the message of the last failed parse, ``success`` is set
    after a schema parsed cleanly. A broken schema always reports ``None`` so
    no partial form renders.
    """

    def __init__(self, on_schema_change: SchemaCallback, debounce_ms: int = DEFAULT_DEBOUNCE_MS):
        self._on_schema_change = on_schema_change
        self._debouncer = Debouncer(self._parse, debounce_ms)
        self.text = ""
        self.error: Optional[str] = None
        self.success = False

    def set_text(self, text: str) -> None:
        self.text = text
        self._debouncer.trigger()

    def flush(self) -> None:
        self._debouncer.flush()

    def close(self) -> None:
        self._debouncer.cancel()

    def _parse(self) -> None:
        if not self.text.strip():
            self.error = None
            self.success = False
            self._on_schema_change(None)
            return

        try:
            schema = parse_form_schema(self.text)
        except SchemaError as exc:
            logger.info("Schema input rejected: %s", exc.message)
            self.error = exc.message
            self.success = False
            self._on_schema_change(None)
            return

        self.error = None
        self.success = True
        self._on_schema_change(schema)


def open_schema_input(on_schema_change: SchemaCallback, settings: Optional[Settings] = None) -> SchemaInput:
    settings = settings or load_settings()
    return SchemaInput(on_schema_change, debounce_ms=settings.schema_debounce_ms)

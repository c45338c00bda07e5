"""Error taxonomy for the form engine."""

from typing import Any, Dict, Optional


class FormEngineError(Exception):
    """Base error carrying a machine-readable code alongside the message."""

    error_code = "form_engine_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class SchemaError(FormEngineError):
    """A schema could not be loaded; the form must not render."""

    error_code = "schema_error"


class SchemaSyntaxError(SchemaError):
    error_code = "schema_syntax_error"


class SchemaShapeError(SchemaError):
    error_code = "schema_shape_error"

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, {"path": path} if path else None)
        self.path = path


class AutoFillError(FormEngineError):
    error_code = "autofill_error"

    def __init__(self, message: str, endpoint: str = ""):
        super().__init__(message, {"endpoint": endpoint} if endpoint else None)
        self.endpoint = endpoint


class PersistenceError(FormEngineError):
    """Draft storage failed. Always logged and swallowed by callers."""

    error_code = "persistence_error"

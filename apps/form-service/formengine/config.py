import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    schema_debounce_ms: int = 500
    draft_debounce_ms: int = 500
    autofill_mock_delay_ms: int = 250
    autofill_base_url: str = ""
    autofill_http_timeout: float = 10.0
    draft_path: Optional[str] = None


def _env_number(name: str, default, cast=int):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Invalid value %r for %s; using default %s", raw, name, default)
        return default


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        schema_debounce_ms=_env_number("FORM_SCHEMA_DEBOUNCE_MS", 500),
        draft_debounce_ms=_env_number("FORM_DRAFT_DEBOUNCE_MS", 500),
        autofill_mock_delay_ms=_env_number("AUTOFILL_MOCK_DELAY_MS", 250),
        autofill_base_url=os.getenv("AUTOFILL_BASE_URL", ""),
        autofill_http_timeout=_env_number("AUTOFILL_HTTP_TIMEOUT", 10.0, float),
        draft_path=os.getenv("FORM_DRAFT_PATH") or None,
    )

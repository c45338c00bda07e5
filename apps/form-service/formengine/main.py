import json
import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException

from formengine.autofill_resolver import resolve_auto_fill_configs
from formengine.config import load_settings
from formengine.errors import SchemaError
from formengine.models import (
    FormSchema,
    SchemaParseRequest,
    SchemaParseResponse,
    SubmitRequest,
)
from formengine.persistence import build_form_id
from formengine.schema_parser import parse_form_schema
from formengine.transport import lookup_address, lookup_company
from formengine.validation import build_validator
from formengine.visibility import prune_hidden

settings = load_settings()

app = FastAPI(title="FluidFill Form Service")
logger = logging.getLogger(__name__)

logger.info("Auto-fill base URL: %s", settings.autofill_base_url or "(mock only)")


def _schema_error(exc: SchemaError) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": exc.error_code, "message": exc.message})


def _load_schema(raw: Any) -> FormSchema:
    text = raw if isinstance(raw, str) else json.dumps(raw)
    try:
        return parse_form_schema(text)
    except SchemaError as exc:
        logger.info("Rejected schema: %s", exc.message)
        raise _schema_error(exc) from exc


@app.get("/health")
async def health():
    return {"ok": True, "service": "form-service"}


@app.post("/schema/parse")
async def schema_parse(payload: SchemaParseRequest):
    schema = _load_schema(payload.text)
    response = SchemaParseResponse(
        form_schema=schema.to_json_dict(),
        form_id=build_form_id(schema),
        auto_fill=[
            config.model_dump(by_alias=True) for config in resolve_auto_fill_configs(schema.fields)
        ],
    )
    return response.model_dump(by_alias=True)


@app.post("/submit")
async def submit(payload: SubmitRequest):
    schema = _load_schema(payload.form_schema)
    try:
        validator = build_validator(schema.fields)
    except SchemaError as exc:
        logger.info("Rejected schema rules: %s", exc.message)
        raise _schema_error(exc) from exc

    data: Dict[str, Any] = dict(payload.data)
    try:
        prune_hidden(schema.fields, data)
        result = validator.validate(data)
    except Exception as exc:  # pragma: no cover - unexpected errors
        logger.exception("Unexpected error validating submission for %r", schema.title)
        raise HTTPException(status_code=500, detail="validation_failed") from exc

    if not result.valid:
        logger.info("Submission for %r rejected with %d errors", schema.title, len(result.errors))
        raise HTTPException(status_code=422, detail={"errors": result.errors})

    logger.info("Submission for %r accepted", schema.title)
    return {"valid": True, "output": result.data}


@app.post("/api/address")
async def address_lookup(params: Dict[str, Any]):
    return lookup_address(params).model_dump(exclude_none=True)


@app.post("/api/company")
async def company_lookup(params: Dict[str, Any]):
    return lookup_company(params).model_dump(exclude_none=True)


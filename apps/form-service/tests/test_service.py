import importlib
import json
import os
import sys
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

FORM_SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(FORM_SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(FORM_SERVICE_ROOT))

_MODULES_TO_CLEAR = ("formengine.main", "formengine.config")
_ENV_KEYS = ("AUTOFILL_BASE_URL", "FORM_DRAFT_DEBOUNCE_MS", "AUTOFILL_HTTP_TIMEOUT")

SCHEMA = {
    "title": "Registration",
    "fields": [
        {
            "id": "name",
            "type": "text",
            "label": "Name",
            "validations": [{"type": "required", "message": "Name is required"}],
        },
        {
            "id": "accountType",
            "type": "radio",
            "label": "Account type",
            "options": [
                {"label": "Personal", "value": "personal"},
                {"label": "Business", "value": "business"},
            ],
        },
        {
            "id": "company",
            "type": "group",
            "title": "Company",
            "showWhen": {"field": "accountType", "equals": "business"},
            "fields": [
                {
                    "id": "vatNumber",
                    "type": "text",
                    "label": "VAT",
                    "autoFill": {
                        "apiEndpoint": "/api/company",
                        "dependsOn": ["vatNumber"],
                        "targetFields": ["companyName"],
                    },
                },
                {"id": "companyName", "type": "text", "label": "Company name"},
            ],
        },
    ],
}


def _reload_module():
    for module_name in _MODULES_TO_CLEAR:
        if module_name in sys.modules:
            del sys.modules[module_name]
    return importlib.import_module("formengine.main")


class ServiceEndpointTests(unittest.TestCase):
    def setUp(self):
        self._env_backup = {key: os.environ.get(key) for key in _ENV_KEYS}
        for key in _ENV_KEYS:
            os.environ.pop(key, None)
        self.client = TestClient(_reload_module().app)

    def tearDown(self):
        for module_name in _MODULES_TO_CLEAR:
            sys.modules.pop(module_name, None)
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "service": "form-service"})

    def test_parse_schema(self):
        response = self.client.post("/schema/parse", json={"text": json.dumps(SCHEMA)})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["schema"]["title"], "Registration")
        self.assertTrue(body["formId"].startswith("dynamic-form:"))
        self.assertEqual(
            body["autoFill"],
            [
                {
                    "key": "company.vatNumber",
                    "apiEndpoint": "/api/company",
                    "dependsOn": [{"key": "vatNumber", "path": "company.vatNumber"}],
                    "targetFields": [{"key": "companyName", "path": "company.companyName"}],
                }
            ],
        )

    def test_parse_schema_rejects_invalid_json(self):
        response = self.client.post("/schema/parse", json={"text": "{"})

        self.assertEqual(response.status_code, 400)
        detail = response.json()["detail"]
        self.assertEqual(detail["error"], "schema_syntax_error")
        self.assertTrue(detail["message"].startswith("Invalid JSON syntax"))

    def test_parse_schema_rejects_duplicate_ids(self):
        schema = {
            "title": "T",
            "fields": [
                {"id": "a", "type": "text", "label": "A"},
                {"id": "a", "type": "text", "label": "B"},
            ],
        }

        response = self.client.post("/schema/parse", json={"text": json.dumps(schema)})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["detail"],
            {"error": "schema_shape_error", "message": 'Duplicate field ID "a" found at fields[1]'},
        )

    def test_submit_reports_field_errors(self):
        response = self.client.post("/submit", json={"schema": SCHEMA, "data": {"name": ""}})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], {"errors": {"name": "Name is required"}})

    def test_submit_drops_hidden_values(self):
        data = {"name": "Ann", "accountType": "personal", "company": {"vatNumber": "BG123456789"}}

        response = self.client.post("/submit", json={"schema": json.dumps(SCHEMA), "data": data})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"valid": True, "output": {"name": "Ann", "accountType": "personal"}})

    def test_submit_keeps_visible_group(self):
        data = {
            "name": "Ann",
            "accountType": "business",
            "company": {"vatNumber": "BG123456789", "companyName": "Tech Solutions Ltd"},
        }

        response = self.client.post("/submit", json={"schema": SCHEMA, "data": data})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["output"], data)

    def test_submit_reports_missing_group_fields_by_path(self):
        schema = {
            "title": "Shipping",
            "fields": [
                {
                    "id": "address",
                    "type": "group",
                    "title": "Address",
                    "fields": [
                        {
                            "id": "city",
                            "type": "text",
                            "label": "City",
                            "validations": [{"type": "required", "message": "City is required"}],
                        }
                    ],
                }
            ],
        }

        response = self.client.post("/submit", json={"schema": schema, "data": {}})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(list(response.json()["detail"]["errors"]), ["address.city"])

    def test_submit_rejects_bad_pattern(self):
        schema = {
            "title": "T",
            "fields": [
                {
                    "id": "code",
                    "type": "text",
                    "label": "Code",
                    "validations": [{"type": "pattern", "value": "(", "message": "Bad"}],
                }
            ],
        }

        response = self.client.post("/submit", json={"schema": schema, "data": {}})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["error"], "schema_shape_error")

    def test_address_lookup(self):
        response = self.client.post("/api/address", json={"zipCode": "4000"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "success": True,
                "data": {"city": "Plovdiv", "state": "Plovdiv", "region": "Plovdiv", "country": "Bulgaria"},
            },
        )

    def test_company_lookup_unknown(self):
        response = self.client.post("/api/company", json={"vatNumber": "XX1"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": False, "error": "No company found for VAT number XX1"})


class SettingsTests(unittest.TestCase):
    def setUp(self):
        self._env_backup = {key: os.environ.get(key) for key in _ENV_KEYS}

    def tearDown(self):
        for module_name in _MODULES_TO_CLEAR:
            sys.modules.pop(module_name, None)
        for key, value in self._env_backup.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_settings_read_from_environment(self):
        os.environ["AUTOFILL_BASE_URL"] = "https://lookup.example.com"
        os.environ["AUTOFILL_HTTP_TIMEOUT"] = "2.5"
        os.environ["FORM_DRAFT_DEBOUNCE_MS"] = "250"

        settings = _reload_module().settings

        self.assertEqual(settings.autofill_base_url, "https://lookup.example.com")
        self.assertEqual(settings.autofill_http_timeout, 2.5)
        self.assertEqual(settings.draft_debounce_ms, 250)

    def test_invalid_number_falls_back_to_default(self):
        os.environ["FORM_DRAFT_DEBOUNCE_MS"] = "soon"
        from formengine.config import load_settings

        with self.assertLogs("formengine.config", level="WARNING"):
            settings = load_settings()

        self.assertEqual(settings.draft_debounce_ms, 500)


if __name__ == "__main__":
    unittest.main()

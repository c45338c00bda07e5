import asyncio
import json
import sys
import unittest
from pathlib import Path

FORM_SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(FORM_SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(FORM_SERVICE_ROOT))

from formengine.config import Settings  # noqa: E402
from formengine.schema_input import SchemaInput, open_schema_input  # noqa: E402

VALID_TEXT = json.dumps({"title": "Contact", "fields": [{"id": "name", "type": "text", "label": "Name"}]})


class SchemaInputTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.received = []
        self.schema_input = SchemaInput(self.received.append, debounce_ms=20)

    def tearDown(self):
        self.schema_input.close()

    async def test_parses_once_typing_pauses(self):
        self.schema_input.set_text('{"title": ')
        self.schema_input.set_text('{"title": "Contact", ')
        self.schema_input.set_text(VALID_TEXT)

        self.assertEqual(self.received, [])
        await asyncio.sleep(0.1)

        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.received[0].title, "Contact")
        self.assertTrue(self.schema_input.success)
        self.assertIsNone(self.schema_input.error)

    async def test_invalid_schema_reports_none_and_error(self):
        self.schema_input.set_text(json.dumps({"title": "Contact", "fields": []}))
        self.schema_input.flush()

        self.assertEqual(self.received, [None])
        self.assertEqual(self.schema_input.error, "Schema must have at least one field")
        self.assertFalse(self.schema_input.success)

    async def test_syntax_error_message(self):
        self.schema_input.set_text("{")
        self.schema_input.flush()

        self.assertEqual(self.received, [None])
        self.assertTrue(self.schema_input.error.startswith("Invalid JSON syntax"))

    async def test_blank_text_clears_state(self):
        self.schema_input.set_text("{")
        self.schema_input.flush()

        self.schema_input.set_text("   ")
        self.schema_input.flush()

        self.assertEqual(self.received, [None, None])
        self.assertIsNone(self.schema_input.error)
        self.assertFalse(self.schema_input.success)

    async def test_close_drops_pending_parse(self):
        self.schema_input.set_text(VALID_TEXT)

        self.schema_input.close()
        await asyncio.sleep(0.1)

        self.assertEqual(self.received, [])

    async def test_debounce_from_settings(self):
        received = []
        schema_input = open_schema_input(received.append, Settings(schema_debounce_ms=20))
        self.addCleanup(schema_input.close)

        schema_input.set_text(VALID_TEXT)
        await asyncio.sleep(0.1)

        self.assertEqual([schema.title for schema in received], ["Contact"])


if __name__ == "__main__":
    unittest.main()

import asyncio
import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

FORM_SERVICE_ROOT = Path(__file__).resolve().parents[1]
if str(FORM_SERVICE_ROOT) not in sys.path:
    sys.path.insert(0, str(FORM_SERVICE_ROOT))

from formengine.errors import PersistenceError  # noqa: E402
from formengine.persistence import (  # noqa: E402
    DraftAutosaver,
    DraftStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    _hash_string,
    build_form_id,
)
from formengine.schema_parser import parse_form_schema  # noqa: E402
from formengine.store import SnapshotStore  # noqa: E402

SCHEMA_TEXT = json.dumps(
    {"title": "Contact", "fields": [{"id": "name", "type": "text", "label": "Name"}]}
)


class FormIdTests(unittest.TestCase):
    def test_hash_matches_known_values(self):
        self.assertEqual(_hash_string(""), "45h")
        self.assertEqual(_hash_string("a"), "3t1g")

    def test_form_id_is_stable_and_content_based(self):
        first = build_form_id(parse_form_schema(SCHEMA_TEXT))
        second = build_form_id(parse_form_schema(SCHEMA_TEXT))
        other = build_form_id(
            parse_form_schema(
                json.dumps({"title": "Contact", "fields": [{"id": "email", "type": "text", "label": "Email"}]})
            )
        )

        self.assertTrue(first.startswith("dynamic-form:"))
        self.assertEqual(first, second)
        self.assertNotEqual(first, other)


class DraftStoreTests(unittest.TestCase):
    def setUp(self):
        self.kv = InMemoryKeyValueStore()
        self.drafts = DraftStore(self.kv)

    def test_round_trip(self):
        self.drafts.save("dynamic-form:abc", {"name": "Ann", "address": {"city": "Sofia"}})

        self.assertEqual(self.drafts.load("dynamic-form:abc"), {"name": "Ann", "address": {"city": "Sofia"}})
        record = json.loads(self.kv.get("form-draft:dynamic-form:abc"))
        self.assertEqual(record["formId"], "dynamic-form:abc")
        self.assertIsInstance(record["timestamp"], int)

    def test_clear(self):
        self.drafts.save("dynamic-form:abc", {"name": "Ann"})

        self.drafts.clear("dynamic-form:abc")

        self.assertIsNone(self.drafts.load("dynamic-form:abc"))
        self.assertIsNone(self.kv.get("form-draft:dynamic-form:abc"))

    def test_invalid_records_load_as_none(self):
        self.kv.set("form-draft:f1", "not json")
        self.kv.set("form-draft:f2", json.dumps({"broken": True}))
        self.kv.set("form-draft:f3", json.dumps({"formId": "other", "data": {"a": "b"}}))
        self.kv.set("form-draft:f4", json.dumps({"formId": "f4", "data": ["a"]}))

        with self.assertLogs("formengine.persistence", level="WARNING"):
            self.assertIsNone(self.drafts.load("f1"))
        for form_id in ("f2", "f3", "f4", "f5"):
            self.assertIsNone(self.drafts.load(form_id))

    def test_storage_failures_are_swallowed(self):
        kv = mock.Mock()
        kv.set.side_effect = PersistenceError("disk full")
        kv.remove.side_effect = PersistenceError("disk full")
        kv.get.side_effect = PersistenceError("disk full")
        drafts = DraftStore(kv)

        with self.assertLogs("formengine.persistence", level="WARNING") as captured:
            drafts.save("f1", {"name": "Ann"})
            drafts.clear("f1")
            self.assertIsNone(drafts.load("f1"))

        self.assertEqual(len(captured.output), 3)

    def test_unserializable_data_is_not_saved(self):
        with self.assertLogs("formengine.persistence", level="WARNING"):
            self.drafts.save("f1", {"when": object()})
        self.assertIsNone(self.kv.get("form-draft:f1"))


class JsonFileKeyValueStoreTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "drafts" / "store.json"

    def tearDown(self):
        self._tmp.cleanup()

    def test_set_get_remove(self):
        kv = JsonFileKeyValueStore(self.path)

        self.assertIsNone(kv.get("a"))
        kv.set("a", "1")
        kv.set("b", "2")
        kv.remove("a")

        self.assertIsNone(kv.get("a"))
        self.assertEqual(JsonFileKeyValueStore(self.path).get("b"), "2")
        self.assertEqual(json.loads(self.path.read_text(encoding="utf-8")), {"b": "2"})

    def test_corrupt_file_raises_persistence_error(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{", encoding="utf-8")

        with self.assertRaises(PersistenceError):
            JsonFileKeyValueStore(self.path).get("a")

    def test_draft_store_over_corrupt_file(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{", encoding="utf-8")
        drafts = DraftStore(JsonFileKeyValueStore(self.path))

        with self.assertLogs("formengine.persistence", level="WARNING"):
            self.assertIsNone(drafts.load("f1"))


class DraftAutosaverTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = SnapshotStore({"name": ""})
        self.drafts = DraftStore(InMemoryKeyValueStore())
        self.autosaver = DraftAutosaver("f1", self.store, self.drafts, debounce_ms=20)
        self.autosaver.start()

    def tearDown(self):
        self.autosaver.close()

    async def test_saves_after_edits_pause(self):
        self.store.set("name", "A")
        self.store.set("name", "An")
        self.store.set("name", "Ann")

        self.assertIsNone(self.drafts.load("f1"))
        await asyncio.sleep(0.1)

        self.assertEqual(self.drafts.load("f1"), {"name": "Ann"})
        self.assertTrue(self.autosaver.has_draft)

    async def test_flush_saves_immediately(self):
        self.store.set("name", "Ann")

        self.autosaver.flush()

        self.assertEqual(self.drafts.load("f1"), {"name": "Ann"})

    async def test_restore_returns_saved_draft(self):
        self.drafts.save("f1", {"name": "Saved"})

        self.assertEqual(self.autosaver.restore(), {"name": "Saved"})

    async def test_clear_draft_skips_the_next_change(self):
        self.store.set("name", "Ann")
        self.autosaver.flush()

        self.autosaver.clear_draft()
        self.store.set("name", "")
        await asyncio.sleep(0.1)

        self.assertIsNone(self.drafts.load("f1"))
        self.assertFalse(self.autosaver.has_draft)

    async def test_close_cancels_pending_save(self):
        self.store.set("name", "Ann")

        self.autosaver.close()
        await asyncio.sleep(0.1)

        self.assertIsNone(self.drafts.load("f1"))


if __name__ == "__main__":
    unittest.main()

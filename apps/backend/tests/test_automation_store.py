import json
import shutil
import sys
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from chatflow.automation.graph import AutomationGraph
from chatflow.automation.schema import AutomationRecord
from chatflow.automation.store import AutomationStore


def _record(automation_id: str = "welcome-flow", **updates) -> AutomationRecord:
    data = {
        "id": automation_id,
        "name": "Welcome flow",
        "workflow": [
            {"id": "t1", "type": "trigger", "config": {"type": "keyword", "keywords": ["hi"]}},
            {"id": "m1", "type": "message", "config": {"text": "Hello {{name}}"}},
        ],
        "connections": [{"from": "t1", "to": "m1"}],
    }
    data.update(updates)
    return AutomationRecord.model_validate(data)


class AutomationStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp_dir = Path(tempfile.mkdtemp(prefix="automation-store-tests-"))
        self.store = AutomationStore(self.tmp_dir)

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_save_and_load_round_trip(self):
        self.store.save(_record())

        loaded = self.store.load("welcome-flow")

        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.name, "Welcome flow")
        self.assertEqual([s.id for s in loaded.workflow], ["t1", "m1"])
        self.assertEqual(loaded.workflow[0].connections, ["m1"])
        self.assertEqual(loaded.trigger_type, "keyword")

        raw = json.loads((self.tmp_dir / "welcome-flow.json").read_text())
        self.assertEqual(len(raw["connections"]), 1)
        self.assertEqual((raw["connections"][0]["from"], raw["connections"][0]["to"]), ("t1", "m1"))

    def test_save_normalizes_legacy_connections(self):
        record = _record(
            connections=[],
            workflow=[
                {"id": "t1", "type": "trigger", "config": {"type": "keyword"}, "connections": ["m1", "gone"]},
                {"id": "m1", "type": "message", "config": {"text": "Hi"}},
            ],
        )

        stored = self.store.save(record)

        self.assertEqual([e.key() for e in stored.connections], [("t1", "m1", None)])
        self.assertEqual(stored.workflow[0].connections, ["m1"])

    def test_save_preserves_created_at(self):
        created = datetime.now() - timedelta(days=3)
        self.store.save(_record(created_at=created))

        self.store.save(_record(name="Renamed"))
        loaded = self.store.load("welcome-flow")

        self.assertEqual(loaded.name, "Renamed")
        self.assertEqual(loaded.created_at, created)

    def test_save_graph_and_load_graph(self):
        record = _record()
        graph = AutomationGraph.from_record(record)
        graph.add_step({"id": "m2", "type": "message", "config": {"text": "Bye"}})
        graph.add_edge("m1", "m2")

        self.store.save_graph(record, graph)
        loaded_record, loaded_graph = self.store.load_graph("welcome-flow")

        self.assertEqual(len(loaded_record.workflow), 3)
        self.assertEqual(loaded_graph.next_step_id("m1"), "m2")

    def test_list_status_and_delete(self):
        self.store.save(_record("first"))
        self.store.save(_record("second"))

        self.assertEqual([r.id for r in self.store.list_all()], ["second", "first"])

        updated = self.store.set_status("first", "active")
        self.assertEqual(updated.status, "active")
        self.assertEqual(self.store.list_all()[0].id, "first")

        self.assertTrue(self.store.delete("first"))
        self.assertFalse(self.store.delete("first"))
        self.assertIsNone(self.store.load("first"))
        self.assertIsNone(self.store.set_status("first", "paused"))

    def test_concurrent_saves_leave_one_complete_record(self):
        names = [f"Version {i}" for i in range(20)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda name: self.store.save(_record(name=name)), names))

        loaded = self.store.load("welcome-flow")
        self.assertIn(loaded.name, names)
        self.assertEqual(sorted(p.name for p in self.tmp_dir.iterdir()), ["welcome-flow.json"])

    def test_rejects_path_like_ids(self):
        with self.assertRaises(ValueError):
            self.store.load("../escape")


if __name__ == "__main__":
    unittest.main()

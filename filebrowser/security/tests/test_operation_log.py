import json
import tempfile
import unittest
from pathlib import Path

from filebrowser.security.operation_log import OperationLogStore


class TestOperationLog(unittest.TestCase):
    def test_record_appends_jsonl_and_reads_back(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = OperationLogStore(path=Path(tmp) / "nested" / "oplog.jsonl")
            self.assertEqual(store.read_entries(), [])

            first = store.record(
                op="upload", src_rel_path="docs/a.pdf", dst_rel_path="docs/a_1.pdf", success=True, error=None
            )
            store.record(op="rename", src_rel_path="docs/b.txt", dst_rel_path=None, success=False, error="exists")

            lines = store.path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)
            self.assertEqual(json.loads(lines[0])["dst_rel_path"], "docs/a_1.pdf")

            entries = store.read_entries()
            self.assertEqual([e.op for e in entries], ["upload", "rename"])
            self.assertEqual(entries[0], first)
            self.assertFalse(entries[1].success)
            self.assertEqual(entries[1].error, "exists")


if __name__ == "__main__":
    unittest.main()

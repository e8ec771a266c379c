import json
import tempfile
import unittest
from pathlib import Path

from filebrowser.config.browser_config import load_browser_config


class TestBrowserConfig(unittest.TestCase):
    def _write(self, tmp: str, data: object) -> Path:
        path = Path(tmp) / "browser.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def test_missing_file_raises_when_explicit(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_browser_config(Path("__definitely_missing_config__.json"))

    def test_reads_roots_host_port_and_locks(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = self._write(
                tmp,
                {
                    "data_dir": "/srv/files",
                    "trashDir": "/srv/trash",
                    "host": "0.0.0.0",
                    "port": 8080,
                    "cross_process_locks": True,
                    "lockTimeoutSec": 2.5,
                    "batchMaxFiles": 4,
                },
            )

            cfg = load_browser_config(path)
            self.assertEqual(cfg.data_dir, "/srv/files")
            self.assertEqual(cfg.trash_dir, "/srv/trash")
            self.assertEqual(cfg.host, "0.0.0.0")
            self.assertEqual(cfg.port, 8080)
            self.assertTrue(cfg.cross_process_locks)
            self.assertEqual(cfg.lock_timeout_s, 2.5)
            self.assertEqual(cfg.batch_max_files, 4)
            self.assertIsNone(cfg.lock_dir)
            self.assertIsNone(cfg.single_max_bytes)

    def test_blank_strings_treated_as_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cfg = load_browser_config(self._write(tmp, {"data_dir": "   "}))
            self.assertIsNone(cfg.data_dir)

    def test_rejects_wrong_types_and_ranges(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(TypeError):
                load_browser_config(self._write(tmp, {"port": "5000"}))
            with self.assertRaises(TypeError):
                load_browser_config(self._write(tmp, {"cross_process_locks": "yes"}))
            with self.assertRaises(TypeError):
                load_browser_config(self._write(tmp, ["not", "an", "object"]))
            with self.assertRaises(ValueError):
                load_browser_config(self._write(tmp, {"port": 70000}))
            with self.assertRaises(ValueError):
                load_browser_config(self._write(tmp, {"lock_timeout_s": 0}))
            with self.assertRaises(ValueError):
                load_browser_config(self._write(tmp, {"batch_max_files": 0}))


if __name__ == "__main__":
    unittest.main()

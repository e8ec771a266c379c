import errno
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from filebrowser.security.errors import ConflictError, DirectoryError, IoError, NotFoundError, ValidationError
from filebrowser.security.fileops import FileMover, move_file, rename_file
from filebrowser.security.naming_lock import NamingLocks
from filebrowser.security.sequential import CollisionResolver

_real_unlink = os.unlink


def _exdev(*_args, **_kwargs):
    raise OSError(errno.EXDEV, "Invalid cross-device link")


class TestMoveFile(unittest.TestCase):
    def _mover(self, tmp: str) -> FileMover:
        return FileMover(resolver=CollisionResolver(NamingLocks(lock_dir=Path(tmp) / "locks")))

    def test_move_into_empty_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "incoming.txt"
            src.write_text("payload", encoding="utf-8")
            dest = Path(tmp) / "dest"
            dest.mkdir()

            final = move_file(src, dest)
            self.assertEqual(final, Path(os.path.realpath(dest)) / "incoming.txt")
            self.assertEqual(final.read_text(encoding="utf-8"), "payload")
            self.assertFalse(src.exists())

    def test_move_onto_existing_name_gets_sequence_suffix(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / "dest"
            dest.mkdir()
            (dest / "file.txt").write_text("old", encoding="utf-8")
            src = Path(tmp) / "file.txt"
            src.write_text("new", encoding="utf-8")

            final = self._mover(tmp).move_file(src, dest)
            self.assertEqual(final.name, "file_1.txt")
            self.assertEqual((dest / "file.txt").read_text(encoding="utf-8"), "old")
            self.assertEqual(final.read_text(encoding="utf-8"), "new")

    def test_move_with_explicit_name(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "upload-1234.part"
            src.write_bytes(b"data")
            dest = Path(tmp) / "dest"
            dest.mkdir()

            final = self._mover(tmp).move_file(src, dest, name="Report.PDF")
            self.assertEqual(final.name, "Report.pdf")

            with self.assertRaises(ValidationError):
                self._mover(tmp).move_file(final, dest, name="bad:name.pdf")
            self.assertTrue(final.exists())

    def test_missing_source_and_bad_destination(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / "dest"
            dest.mkdir()
            with self.assertRaises(NotFoundError):
                move_file(Path(tmp) / "missing.txt", dest)

            src = Path(tmp) / "a.txt"
            src.write_text("a", encoding="utf-8")
            with self.assertRaises(DirectoryError):
                move_file(src, Path(tmp) / "no-such-dir")
            with self.assertRaises(NotFoundError):
                move_file(dest, Path(tmp))
            self.assertTrue(src.exists())

    def test_cross_device_move_copies_then_removes_source(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "big.bin"
            src.write_bytes(b"\x00\x01" * 4096)
            dest = Path(tmp) / "dest"
            dest.mkdir()

            with mock.patch("os.rename", side_effect=_exdev):
                final = self._mover(tmp).move_file(src, dest)

            self.assertEqual(final.read_bytes(), b"\x00\x01" * 4096)
            self.assertFalse(src.exists())

    def test_cross_device_move_removes_copy_when_source_cannot_be_deleted(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "keep.txt"
            src.write_text("original", encoding="utf-8")
            dest = Path(tmp) / "dest"
            dest.mkdir()

            def unlink(path, *args, **kwargs):
                if os.fspath(path) == os.path.realpath(src):
                    raise PermissionError(errno.EACCES, "Permission denied")
                return _real_unlink(path, *args, **kwargs)

            with mock.patch("os.rename", side_effect=_exdev), mock.patch("os.unlink", side_effect=unlink):
                with self.assertRaises(IoError):
                    self._mover(tmp).move_file(src, dest)

            self.assertEqual(src.read_text(encoding="utf-8"), "original")
            self.assertEqual(list(dest.iterdir()), [])

    def test_cross_device_copy_failure_removes_partial_target(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "photo.png"
            src.write_bytes(b"png-bytes")
            dest = Path(tmp) / "dest"
            dest.mkdir()

            with mock.patch("os.rename", side_effect=_exdev), mock.patch(
                "shutil.copyfileobj", side_effect=OSError(errno.ENOSPC, "No space left on device")
            ):
                with self.assertRaises(IoError) as ctx:
                    self._mover(tmp).move_file(src, dest)

            self.assertIn("No space left on device", ctx.exception.message)
            self.assertEqual(list(dest.iterdir()), [])
            self.assertEqual(src.read_bytes(), b"png-bytes")

    def test_failed_cleanup_is_logged_and_original_error_surfaces(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "keep.txt"
            src.write_text("original", encoding="utf-8")
            dest = Path(tmp) / "dest"
            dest.mkdir()
            denied = PermissionError(errno.EACCES, "Permission denied")

            with mock.patch("os.rename", side_effect=_exdev), mock.patch(
                "os.unlink", side_effect=denied
            ), mock.patch.object(Path, "unlink", side_effect=denied):
                with self.assertLogs("filebrowser.security.fileops", level="ERROR") as logs:
                    with self.assertRaises(IoError) as ctx:
                        self._mover(tmp).move_file(src, dest)

            self.assertTrue(ctx.exception.message.startswith("Failed to remove original after copy"))
            self.assertTrue(any("failed to remove" in line for line in logs.output))
            self.assertEqual(src.read_text(encoding="utf-8"), "original")
            self.assertEqual([p.name for p in dest.iterdir()], ["keep.txt"])

    def test_other_rename_failures_surface_as_io_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "a.txt"
            src.write_text("a", encoding="utf-8")
            dest = Path(tmp) / "dest"
            dest.mkdir()

            with mock.patch("os.rename", side_effect=PermissionError(errno.EACCES, "Permission denied")):
                with self.assertRaises(IoError) as ctx:
                    self._mover(tmp).move_file(src, dest)
            self.assertEqual(ctx.exception.http_status, 500)
            self.assertTrue(src.exists())


class TestRenameFile(unittest.TestCase):
    def test_rename_in_place(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            d = Path(tmp)
            (d / "old.txt").write_text("x", encoding="utf-8")

            final = rename_file(d, "old.txt", "new.txt")
            self.assertEqual(final.name, "new.txt")
            self.assertFalse((d / "old.txt").exists())
            self.assertEqual((d / "new.txt").read_text(encoding="utf-8"), "x")

    def test_rename_onto_existing_name_is_conflict(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            d = Path(tmp)
            (d / "a.txt").write_text("a", encoding="utf-8")
            (d / "b.txt").write_text("b", encoding="utf-8")

            with self.assertRaises(ConflictError) as ctx:
                rename_file(d, "a.txt", "b.txt")
            self.assertEqual(ctx.exception.http_status, 409)
            self.assertEqual((d / "a.txt").read_text(encoding="utf-8"), "a")
            self.assertEqual((d / "b.txt").read_text(encoding="utf-8"), "b")

    def test_rename_missing_file_and_invalid_names(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            d = Path(tmp)
            (d / "a.txt").write_text("a", encoding="utf-8")

            with self.assertRaises(NotFoundError):
                rename_file(d, "missing.txt", "b.txt")
            with self.assertRaises(ValidationError):
                rename_file(d, "a.txt", "b?.txt")
            with self.assertRaises(ValidationError):
                rename_file(d, "../a.txt", "b.txt")
            with self.assertRaises(DirectoryError):
                rename_file(d / "missing", "a.txt", "b.txt")
            self.assertTrue((d / "a.txt").exists())


if __name__ == "__main__":
    unittest.main()

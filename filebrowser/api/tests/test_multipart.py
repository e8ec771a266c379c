import io
import tempfile
import unittest
from pathlib import Path

from filebrowser.api.multipart import stream_multipart
from filebrowser.security.errors import FileOpsError

_BOUNDARY = "----filebrowser-form-boundary"
_CONTENT_TYPE = f"multipart/form-data; boundary={_BOUNDARY}"


def _body(*parts: bytes) -> bytes:
    return b"".join(parts) + f"--{_BOUNDARY}--\r\n".encode("ascii")


def _field(name: str, value: str) -> bytes:
    return (
        f"--{_BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
        f"{value}\r\n"
    ).encode("utf-8")


def _file(name: str, filename: str, content_type: str, data: bytes) -> bytes:
    head = (
        f"--{_BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
        f"Content-Type: {content_type}\r\n\r\n"
    ).encode("utf-8")
    return head + data + b"\r\n"


class TestStreamMultipart(unittest.TestCase):
    def test_file_parts_are_written_to_staging(self) -> None:
        payload = bytes(range(256)) * 1024
        body = _body(
            _field("path", "docs/2024"),
            _file("file", "scan.pdf", "application/pdf", payload),
            _file("images[]", "a.png", "image/png", b"\r\n--not-a-boundary\r\n"),
        )
        with tempfile.TemporaryDirectory() as tmp:
            form = stream_multipart(_CONTENT_TYPE, io.BytesIO(body), len(body), staging_dir=tmp)

            self.assertEqual(form.get_field("path"), "docs/2024")
            self.assertEqual(form.get_field("missing", "x"), "x")

            (pdf,) = form.get_files("file")
            self.assertEqual(pdf.filename, "scan.pdf")
            self.assertEqual(pdf.content_type, "application/pdf")
            self.assertEqual(pdf.size, len(payload))
            self.assertEqual(pdf.tmp_path.parent, Path(tmp))
            self.assertEqual(pdf.tmp_path.read_bytes(), payload)

            (png,) = form.get_files("images", "images[]")
            self.assertEqual(png.tmp_path.read_bytes(), b"\r\n--not-a-boundary\r\n")

            form.cleanup()
            self.assertEqual(list(Path(tmp).iterdir()), [])

    def test_reads_body_in_chunks_from_stream(self) -> None:
        body = _body(_file("file", "big.bin", "application/octet-stream", b"z" * (300 * 1024)))
        stream = io.BytesIO(body + b"trailing bytes of the next request")
        with tempfile.TemporaryDirectory() as tmp:
            form = stream_multipart(_CONTENT_TYPE, stream, len(body), staging_dir=tmp)
            self.assertEqual(form.get_files("file")[0].size, 300 * 1024)
            self.assertEqual(stream.read(), b"trailing bytes of the next request")
            form.cleanup()

    def test_rejects_other_content_types(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileOpsError) as ctx:
                stream_multipart("application/json", io.BytesIO(b"{}"), 2, staging_dir=tmp)
            self.assertEqual(ctx.exception.code, "INVALID_CONTENT_TYPE")
            self.assertEqual(ctx.exception.http_status, 415)

            with self.assertRaises(FileOpsError) as ctx:
                stream_multipart("multipart/form-data", io.BytesIO(b""), 0, staging_dir=tmp)
            self.assertEqual(ctx.exception.code, "INVALID_MULTIPART")

    def test_truncated_body_leaves_no_staged_files(self) -> None:
        body = _body(_file("file", "a.bin", "application/octet-stream", b"a" * 4096))
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileOpsError) as ctx:
                stream_multipart(_CONTENT_TYPE, io.BytesIO(body[:2000]), len(body), staging_dir=tmp)
            self.assertEqual(ctx.exception.code, "INVALID_MULTIPART")
            self.assertEqual(list(Path(tmp).iterdir()), [])

    def test_oversized_text_field_is_rejected(self) -> None:
        body = _body(_file("file", "a.bin", "application/octet-stream", b"a"), _field("path", "p" * 100))
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(FileOpsError) as ctx:
                stream_multipart(_CONTENT_TYPE, io.BytesIO(body), len(body), staging_dir=tmp, max_field_bytes=10)
            self.assertEqual(ctx.exception.http_status, 413)
            self.assertEqual(list(Path(tmp).iterdir()), [])


if __name__ == "__main__":
    unittest.main()

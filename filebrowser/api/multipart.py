from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, BinaryIO

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from filebrowser.security.errors import FileOpsError

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024
MAX_FIELD_BYTES = 64 * 1024


@dataclass(frozen=True)
class StagedPart:
    """A file part already written to ``tmp_path`` in the staging directory."""

    field_name: str
    filename: str
    content_type: str
    size: int
    tmp_path: Path


@dataclass
class MultipartForm:
    fields: dict[str, list[str]] = field(default_factory=dict)
    files: dict[str, list[StagedPart]] = field(default_factory=dict)

    def get_field(self, name: str, default: str = "") -> str:
        values = self.fields.get(name)
        if not values:
            return default
        return values[0]

    def get_files(self, *names: str) -> list[StagedPart]:
        parts: list[StagedPart] = []
        for name in names:
            parts.extend(self.files.get(name, []))
        return parts

    def staged_paths(self) -> list[Path]:
        return [part.tmp_path for parts in self.files.values() for part in parts]

    def cleanup(self) -> None:
        for path in self.staged_paths():
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("failed to remove staged upload %s: %s", path, exc)


def _decode(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


class _FormBuilder:
    """Parser callbacks that stream file parts into staging files."""

    def __init__(self, staging_dir: Path, *, max_field_bytes: int) -> None:
        self.form = MultipartForm()
        self._staging_dir = staging_dir
        self._max_field_bytes = max_field_bytes
        self._header_field = b""
        self._header_value = b""
        self._headers: dict[bytes, bytes] = {}
        self._field_name = ""
        self._filename: str | None = None
        self._content_type = ""
        self._size = 0
        self._buffer = bytearray()
        self._file: IO[bytes] | None = None
        self._tmp_path: Path | None = None

    def on_part_begin(self) -> None:
        self._headers = {}
        self._field_name = ""
        self._filename = None
        self._content_type = ""
        self._size = 0
        self._buffer = bytearray()

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def on_headers_finished(self) -> None:
        _disposition, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        self._field_name = _decode(options.get(b"name", b""))
        if b"filename" not in options:
            return

        self._filename = _decode(options[b"filename"])
        content_type, _params = parse_options_header(self._headers.get(b"content-type", b""))
        self._content_type = _decode(content_type) or "application/octet-stream"
        fd, tmp_name = tempfile.mkstemp(prefix="upload-", suffix=".part", dir=self._staging_dir)
        self._tmp_path = Path(tmp_name)
        self._file = os.fdopen(fd, "wb")

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        chunk = data[start:end]
        self._size += len(chunk)
        if self._file is not None:
            self._file.write(chunk)
            return
        if self._size > self._max_field_bytes:
            raise FileOpsError("FIELD_TOO_LARGE", "form field exceeds size limit", http_status=413)
        self._buffer.extend(chunk)

    def on_part_end(self) -> None:
        if self._file is None:
            if self._field_name:
                self.form.fields.setdefault(self._field_name, []).append(_decode(bytes(self._buffer)))
            return

        self._file.close()
        self._file = None
        tmp_path, self._tmp_path = self._tmp_path, None
        assert tmp_path is not None
        if not self._field_name:
            tmp_path.unlink(missing_ok=True)
            return
        self.form.files.setdefault(self._field_name, []).append(
            StagedPart(
                field_name=self._field_name,
                filename=self._filename or "",
                content_type=self._content_type,
                size=self._size,
                tmp_path=tmp_path,
            )
        )

    def abort(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        if self._tmp_path is not None:
            self._tmp_path.unlink(missing_ok=True)
            self._tmp_path = None
        self.form.cleanup()

    def callbacks(self) -> dict[str, object]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
        }


def stream_multipart(
    content_type: str,
    stream: BinaryIO,
    length: int,
    *,
    staging_dir: str | os.PathLike[str],
    max_field_bytes: int = MAX_FIELD_BYTES,
) -> MultipartForm:
    """Read ``length`` bytes of multipart/form-data from ``stream``.

    File parts go straight to files in ``staging_dir``; text fields are kept in
    memory up to ``max_field_bytes`` each. The caller owns the staged files and
    must call ``MultipartForm.cleanup`` when done. On error nothing is left
    behind.
    """

    mime, params = parse_options_header(content_type)
    if mime != b"multipart/form-data":
        raise FileOpsError("INVALID_CONTENT_TYPE", "expected multipart/form-data body", http_status=415)
    boundary = params.get(b"boundary")
    if not boundary:
        raise FileOpsError("INVALID_MULTIPART", "multipart boundary missing")

    builder = _FormBuilder(Path(staging_dir), max_field_bytes=max_field_bytes)
    parser = MultipartParser(boundary, builder.callbacks())
    remaining = length
    try:
        while remaining > 0:
            chunk = stream.read(min(READ_CHUNK_BYTES, remaining))
            if not chunk:
                raise FileOpsError("INVALID_MULTIPART", "request body ended early")
            remaining -= len(chunk)
            parser.write(chunk)
        parser.finalize()
    except MultipartParseError as exc:
        builder.abort()
        raise FileOpsError("INVALID_MULTIPART", f"malformed multipart/form-data body: {exc}") from exc
    except BaseException:
        builder.abort()
        raise
    return builder.form

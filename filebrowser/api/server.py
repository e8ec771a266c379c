from __future__ import annotations

import argparse
import json
import logging
import secrets
import tempfile
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

from filebrowser.config.browser_config import BrowserConfig, load_browser_config
from filebrowser.security.errors import DirectoryError, FileOpsError
from filebrowser.security.naming_lock import DEFAULT_LOCK_TIMEOUT_S, NamingLocks
from filebrowser.security.operation_log import OperationLogStore
from filebrowser.security.paths import SandboxRoot
from filebrowser.uploads.pipeline import (
    BATCH_FILE_MAX_SIZE,
    BATCH_MAX_FILES,
    BATCH_MAX_TOTAL_SIZE,
    BATCH_UPLOAD_ALLOWED_TYPES,
    SINGLE_FILE_MAX_SIZE,
    SINGLE_UPLOAD_ALLOWED_TYPES,
    UploadedFile,
    UploadPolicy,
)

from .multipart import MultipartForm, StagedPart, stream_multipart
from .service import BatchLimits, FileBrowserService, FileOpsResult

logger = logging.getLogger(__name__)

# Headroom for multipart framing on top of the upload limits.
_BODY_OVERHEAD_BYTES = 1024 * 1024


def _as_upload(part: StagedPart) -> UploadedFile:
    return UploadedFile(
        name=part.filename,
        declared_type=part.content_type,
        size=part.size,
        tmp_path=part.tmp_path,
    )


class _FileBrowserServer(ThreadingHTTPServer):
    daemon_threads = True

    browser: FileBrowserService
    staging_dir: Path
    max_body_bytes: int


class _Handler(BaseHTTPRequestHandler):
    server: _FileBrowserServer

    def _send_json(self, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, status: int, code: str, message: str) -> None:
        self._send_json(status, {"error": {"code": code, "message": message}})

    def _send_result(self, result: FileOpsResult) -> None:
        self._send_json(result.http_status, result.payload)

    def _content_length(self) -> int:
        length_raw = self.headers.get("Content-Length", "0")
        try:
            length = int(length_raw)
        except ValueError:
            raise FileOpsError("INVALID_CONTENT_LENGTH", "invalid Content-Length header")
        if length < 0:
            raise FileOpsError("INVALID_CONTENT_LENGTH", "invalid Content-Length header")
        if length > self.server.max_body_bytes:
            raise FileOpsError("BODY_TOO_LARGE", "request body exceeds upload limits", http_status=413)
        return length

    def _read_body(self) -> bytes:
        length = self._content_length()
        if length == 0:
            return b""
        return self.rfile.read(length)

    def _read_json_body(self) -> dict[str, Any]:
        raw = self._read_body()
        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise FileOpsError("INVALID_JSON", f"invalid JSON body: {exc}")
        if not isinstance(data, dict):
            raise FileOpsError("INVALID_JSON", "JSON body must be an object")
        return data

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        path = parsed.path
        query = parse_qs(parsed.query)

        if path == "/api/health":
            self._send_json(200, {"ok": True})
            return

        if path != "/api/list":
            self._send_error(404, "NOT_FOUND", f"unknown endpoint: {path}")
            return

        request = {
            "path": query.get("path", [""])[0],
            "recursive": query.get("recursive", ["0"])[0] in {"1", "true", "True", "yes"},
        }
        self._dispatch(lambda: self.server.browser.list_directory(request))

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        path = parsed.path

        if path not in {"/api/upload", "/api/upload-images", "/api/rename", "/api/delete"}:
            self._send_error(404, "NOT_FOUND", f"unknown endpoint: {path}")
            return

        if path in {"/api/rename", "/api/delete"}:
            try:
                body = self._read_json_body()
            except FileOpsError as exc:
                self._send_error(exc.http_status, exc.code, exc.message)
                return
            if path == "/api/rename":
                self._dispatch(lambda: self.server.browser.rename(body))
            else:
                self._dispatch(lambda: self.server.browser.delete(body))
            return

        form: MultipartForm | None = None
        try:
            try:
                form = stream_multipart(
                    self.headers.get("Content-Type", ""),
                    self.rfile,
                    self._content_length(),
                    staging_dir=self.server.staging_dir,
                )
            except FileOpsError as exc:
                self._send_error(exc.http_status, exc.code, exc.message)
                return

            user_path = form.get_field("path")
            if path == "/api/upload":
                parts = form.get_files("file")
                if not parts:
                    self._send_error(400, "UPLOAD_REJECTED", "No file uploaded.")
                    return
                upload = _as_upload(parts[0])
                self._dispatch(lambda: self.server.browser.upload(user_path, upload))
            else:
                uploads = [_as_upload(part) for part in form.get_files("images", "images[]")]
                self._dispatch(lambda: self.server.browser.upload_images(user_path, uploads))
        finally:
            if form is not None:
                form.cleanup()

    def _dispatch(self, operation: Callable[[], FileOpsResult]) -> None:
        try:
            result = operation()
        except FileOpsError as exc:
            if exc.http_status >= 500:
                logger.error("%s: %s", exc.code, exc.message)
            else:
                logger.info("%s: %s", exc.code, exc.message)
            self._send_error(exc.http_status, exc.code, exc.message)
            return
        except Exception as exc:
            logger.exception("file operation failed: %s", exc)
            self._send_error(500, "FILEOPS_FAILED", "An unexpected error occurred.")
            return
        self._send_result(result)

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.info("%s - %s", self.address_string(), fmt % args)


def build_service(
    *,
    data_dir: str | Path,
    trash_dir: str | Path,
    lock_dir: str | Path | None,
    cross_process_locks: bool,
    lock_timeout_s: float,
    operation_log_path: str | Path,
    single_max_bytes: int = SINGLE_FILE_MAX_SIZE,
    batch_max_file_bytes: int = BATCH_FILE_MAX_SIZE,
    batch_max_files: int = BATCH_MAX_FILES,
    batch_max_total_bytes: int = BATCH_MAX_TOTAL_SIZE,
) -> FileBrowserService:
    data_root = SandboxRoot.open(data_dir)
    trash_root = SandboxRoot.open(trash_dir)
    if data_root.contains(trash_root.path) or trash_root.contains(data_root.path):
        raise DirectoryError("data and trash directories must not contain each other")

    return FileBrowserService(
        data_root=data_root,
        trash_root=trash_root,
        locks=NamingLocks(
            lock_dir=Path(lock_dir) if lock_dir is not None else None,
            cross_process=cross_process_locks,
            timeout_s=lock_timeout_s,
        ),
        log_store=OperationLogStore(path=operation_log_path),
        single_policy=UploadPolicy(allowed_types=SINGLE_UPLOAD_ALLOWED_TYPES, max_file_size=single_max_bytes),
        batch_policy=UploadPolicy(allowed_types=BATCH_UPLOAD_ALLOWED_TYPES, max_file_size=batch_max_file_bytes),
        batch_limits=BatchLimits(max_files=batch_max_files, max_total_size=batch_max_total_bytes),
    )


def make_server(
    browser: FileBrowserService,
    *,
    host: str,
    port: int,
    staging_dir: str | Path | None = None,
    max_body_bytes: int = max(SINGLE_FILE_MAX_SIZE, BATCH_MAX_TOTAL_SIZE) + _BODY_OVERHEAD_BYTES,
) -> _FileBrowserServer:
    server = _FileBrowserServer((host, port), _Handler)
    server.browser = browser
    if staging_dir is None:
        staging_dir = Path(tempfile.gettempdir()) / f"web-file-browser-staging-{secrets.token_hex(4)}"
    server.staging_dir = Path(staging_dir)
    server.staging_dir.mkdir(parents=True, exist_ok=True)
    server.max_body_bytes = max_body_bytes
    return server


def _merged(cli_value: Any, config_value: Any, default: Any) -> Any:
    if cli_value is not None:
        return cli_value
    if config_value is not None:
        return config_value
    return default


def run_server(args: argparse.Namespace, config: BrowserConfig) -> None:
    data_dir = _merged(args.data_dir, config.data_dir, None)
    trash_dir = _merged(args.trash_dir, config.trash_dir, None)
    if data_dir is None or trash_dir is None:
        raise SystemExit("--data-dir and --trash-dir are required (flag or config file)")

    default_log_path = Path(__file__).resolve().parents[1] / "data" / "operation-log.jsonl"
    single_max = config.single_max_bytes or SINGLE_FILE_MAX_SIZE
    batch_total = config.batch_max_total_bytes or BATCH_MAX_TOTAL_SIZE

    browser = build_service(
        data_dir=data_dir,
        trash_dir=trash_dir,
        lock_dir=_merged(args.lock_dir, config.lock_dir, None),
        cross_process_locks=bool(args.cross_process_locks or config.cross_process_locks),
        lock_timeout_s=_merged(args.lock_timeout, config.lock_timeout_s, DEFAULT_LOCK_TIMEOUT_S),
        operation_log_path=_merged(args.operation_log, config.operation_log, default_log_path),
        single_max_bytes=single_max,
        batch_max_file_bytes=config.batch_max_file_bytes or BATCH_FILE_MAX_SIZE,
        batch_max_files=config.batch_max_files or BATCH_MAX_FILES,
        batch_max_total_bytes=batch_total,
    )

    host = _merged(args.host, config.host, "127.0.0.1")
    port = _merged(args.port, config.port, 5000)
    server = make_server(
        browser,
        host=host,
        port=port,
        staging_dir=args.staging_dir,
        max_body_bytes=max(single_max, batch_total) + _BODY_OVERHEAD_BYTES,
    )
    logger.info(
        "serving on http://%s:%s (data=%s, trash=%s)",
        host,
        port,
        browser.data_root.path,
        browser.trash_root.path,
    )
    try:
        server.serve_forever()
    finally:
        server.server_close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sandboxed web file browser API.")
    parser.add_argument("--config", default=None, help="Path to browser.json (default: ./config/browser.json if exists).")
    parser.add_argument("--data-dir", default=None, help="Directory exposed to callers.")
    parser.add_argument("--trash-dir", default=None, help="Directory receiving deleted files.")
    parser.add_argument("--host", default=None, help="Bind host (default: 127.0.0.1).")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: 5000).")
    parser.add_argument(
        "--lock-dir",
        default=None,
        help="Directory for naming lock files (default: OS cache dir).",
    )
    parser.add_argument(
        "--cross-process-locks",
        action="store_true",
        help="Also take OS advisory file locks so several processes can share directories.",
    )
    parser.add_argument(
        "--lock-timeout",
        type=float,
        default=None,
        help=f"Seconds to wait for a naming lock (default: {DEFAULT_LOCK_TIMEOUT_S:g}).",
    )
    parser.add_argument(
        "--operation-log",
        default=None,
        help="Path to operation log JSONL (default: filebrowser/data/operation-log.jsonl).",
    )
    parser.add_argument(
        "--staging-dir",
        default=None,
        help="Directory for in-flight uploads (default: system temp dir).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = load_browser_config(args.config)
    run_server(args, config)
    return 0

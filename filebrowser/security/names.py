from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from .errors import ValidationError

MAX_NAME_LENGTH = 255

_INVALID_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_RESERVED_RE = re.compile(r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$")


@dataclass(frozen=True)
class NameCheck:
    ok: bool
    reason: str | None = None

    def raise_for_reason(self) -> None:
        if not self.ok:
            raise ValidationError(self.reason or "invalid file name")


_OK = NameCheck(ok=True)


def split_name(name: str) -> tuple[str, str]:
    """Split a name into (base, extension) on the last dot.

    ".hidden" gives ("", "hidden") and "archive" gives ("archive", "").
    """

    base, dot, ext = name.rpartition(".")
    if not dot:
        return name, ""
    return base, ext


def check_file_name(name: str) -> NameCheck:
    name = unicodedata.normalize("NFC", name)

    if name == "":
        return NameCheck(False, "The file name cannot be empty.")

    if len(name) > MAX_NAME_LENGTH:
        return NameCheck(False, f"The file name exceeds the maximum length of {MAX_NAME_LENGTH} characters.")

    if _INVALID_CHARS_RE.search(name):
        return NameCheck(False, "The file name contains invalid characters.")

    base, _ext = split_name(name)
    if _RESERVED_RE.match(base.upper()):
        return NameCheck(False, f"The file name '{name}' is a reserved name on Windows.")

    if name.endswith((".", " ")):
        return NameCheck(False, "The file name must not end with a space or dot.")

    return _OK


def validate_file_name(name: str) -> None:
    check_file_name(name).raise_for_reason()

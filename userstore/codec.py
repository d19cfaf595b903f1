"""JSON snapshot codec and atomic file persistence for the user store."""
from __future__ import annotations

import json
import os
import re
import tempfile
from contextlib import suppress
from datetime import datetime
from pathlib import Path
from typing import Dict, Mapping

from .models import StoreSnapshot, User

_ID_PATTERN = re.compile(r"[1-9][0-9]*")
_TIMESTAMP_PATTERN = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>[Zz]|[+-]\d{2}:\d{2})"
)
_RECORD_FIELDS = ("created_at", "display_name", "email")


class CodecError(RuntimeError):
    """Base class for snapshot serialization failures."""


class EncodingError(CodecError):
    """Raised when an in-memory snapshot cannot be represented on disk."""


class DecodingError(CodecError):
    """Raised when stored bytes do not describe a valid snapshot."""


class PersistenceError(RuntimeError):
    """Raised when the snapshot file cannot be read or written."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(message)
        self.path = path


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_datetime(value: object) -> str:
    if not isinstance(value, datetime):
        raise EncodingError("created_at must be a datetime")
    if value.tzinfo is None or value.utcoffset() is None:
        raise EncodingError("created_at must be timezone-aware")
    return value.isoformat()


def _parse_datetime(value: object) -> datetime:
    """Parse RFC 3339 timestamps, including nanosecond precision and ``Z``."""

    if not isinstance(value, str):
        raise DecodingError("created_at must be a string")
    match = _TIMESTAMP_PATTERN.fullmatch(value.strip())
    if match is None:
        raise DecodingError(f"Invalid created_at timestamp {value!r}")

    text = match.group("base")
    fraction = match.group("fraction")
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    offset = match.group("offset")
    text += "+00:00" if offset in ("Z", "z") else offset

    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise DecodingError(f"Invalid created_at timestamp {value!r}") from exc


def _encode_user(key: str, user: User) -> Dict[str, str]:
    if not isinstance(user, User):
        raise EncodingError(f"Record {key!r} is not a User")
    if user.id != key:
        raise EncodingError(f"Record key {key!r} does not match user id {user.id!r}")
    if not isinstance(user.display_name, str) or not isinstance(user.email, str):
        raise EncodingError(f"Record {key!r} has non-text fields")
    return {
        "created_at": _serialize_datetime(user.created_at),
        "display_name": user.display_name,
        "email": user.email,
    }


def encode(snapshot: StoreSnapshot) -> bytes:
    """Serialise ``snapshot`` to deterministic UTF-8 JSON."""

    sequence = snapshot.sequence
    if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 0:
        raise EncodingError("Snapshot sequence must be a non-negative integer")

    payload = {
        "increment": sequence,
        "list": {key: _encode_user(key, user) for key, user in snapshot.records.items()},
    }
    try:
        text = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Snapshot could not be serialised: {exc}") from exc
    return text.encode("utf-8")


def _decode_user(key: object, raw: object, sequence: int) -> User:
    if not isinstance(key, str) or not _ID_PATTERN.fullmatch(key):
        raise DecodingError(f"Invalid user identifier {key!r}")
    if int(key) > sequence:
        raise DecodingError(f"User identifier {key} exceeds increment {sequence}")
    if not isinstance(raw, Mapping):
        raise DecodingError(f"User {key} must be an object")

    display_name = raw.get("display_name")
    email = raw.get("email", "")
    if not isinstance(display_name, str) or display_name == "":
        raise DecodingError(f"User {key} has an empty display_name")
    if email is None:
        email = ""
    if not isinstance(email, str):
        raise DecodingError(f"User {key} has a non-text email")

    return User(
        id=key,
        display_name=display_name,
        email=email,
        created_at=_parse_datetime(raw.get("created_at")),
    )


def decode(data: bytes) -> StoreSnapshot:
    """Parse bytes produced by :func:`encode`; empty input is an empty snapshot."""

    if not data or not data.strip():
        return StoreSnapshot()

    try:
        raw = json.loads(data)
    except ValueError as exc:
        raise DecodingError(f"Snapshot is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise DecodingError("Snapshot must be a JSON object")

    sequence = raw.get("increment", 0)
    if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 0:
        raise DecodingError("Snapshot increment must be a non-negative integer")

    records_raw = raw.get("list")
    if records_raw is None:
        records_raw = {}
    if not isinstance(records_raw, dict):
        raise DecodingError("Snapshot list must be an object")

    records = {key: _decode_user(key, value, sequence) for key, value in records_raw.items()}
    return StoreSnapshot(sequence=sequence, records=records)


class SnapshotFile:
    """The single well-known file that holds the store snapshot."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> StoreSnapshot:
        """Read and decode the snapshot; a missing file yields an empty one."""

        try:
            data = self._path.read_bytes()
        except FileNotFoundError:
            return StoreSnapshot()
        except OSError as exc:
            raise PersistenceError(self._path, f"Failed to read {self._path}: {exc}") from exc
        return decode(data)

    def write(self, snapshot: StoreSnapshot) -> None:
        """Atomically replace the file contents with ``snapshot``.

        The payload is written to a temporary sibling file, flushed to disk and
        renamed over the destination, so readers only ever see a complete
        snapshot.
        """

        payload = encode(snapshot)
        try:
            _ensure_directory(self._path)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                dir=str(self._path.parent),
            )
        except OSError as exc:
            raise PersistenceError(self._path, f"Failed to write {self._path}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            with suppress(OSError):
                os.unlink(tmp_name)
            raise PersistenceError(self._path, f"Failed to write {self._path}: {exc}") from exc


__all__ = [
    "CodecError",
    "DecodingError",
    "EncodingError",
    "PersistenceError",
    "SnapshotFile",
    "decode",
    "encode",
]

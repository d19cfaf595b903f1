from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from userstore.codec import (
    DecodingError,
    EncodingError,
    PersistenceError,
    SnapshotFile,
    decode,
    encode,
)
from userstore.models import StoreSnapshot, User

CREATED = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def _user(user_id: str, name: str = "Ada", email: str = "ada@example.com") -> User:
    return User(id=user_id, display_name=name, email=email, created_at=CREATED)


def test_encode_produces_stable_file_layout() -> None:
    snapshot = StoreSnapshot(sequence=2, records={"2": _user("2")})

    assert encode(snapshot) == (
        b'{"increment":2,"list":{"2":{"created_at":"2024-01-01T10:00:00+00:00",'
        b'"display_name":"Ada","email":"ada@example.com"}}}'
    )


def test_encode_does_not_depend_on_insertion_order() -> None:
    first = StoreSnapshot(sequence=3, records={"1": _user("1"), "3": _user("3", "Grace")})
    second = StoreSnapshot(sequence=3, records={"3": _user("3", "Grace"), "1": _user("1")})

    assert encode(first) == encode(second)


@pytest.mark.parametrize("data", [b"", b"   \n"])
def test_empty_input_decodes_to_empty_snapshot(data: bytes) -> None:
    snapshot = decode(data)

    assert snapshot.sequence == 0
    assert snapshot.records == {}


def test_decode_accepts_rfc3339_nanosecond_timestamps() -> None:
    data = (
        b'{"increment":2,"list":{'
        b'"1":{"created_at":"2023-05-01T12:30:45.123456789+03:00","display_name":"Ada","email":"ada@example.com"},'
        b'"2":{"created_at":"2023-05-02T08:00:00Z","display_name":"Grace","email":""}}}'
    )

    snapshot = decode(data)

    assert snapshot.sequence == 2
    assert snapshot.records["1"].created_at == datetime(
        2023, 5, 1, 12, 30, 45, 123456, tzinfo=timezone(timedelta(hours=3))
    )
    assert snapshot.records["2"].created_at == datetime(2023, 5, 2, 8, 0, tzinfo=timezone.utc)
    assert snapshot.records["2"].id == "2"


def test_decode_treats_null_list_as_empty() -> None:
    snapshot = decode(b'{"increment":4,"list":null}')

    assert snapshot.sequence == 4
    assert snapshot.records == {}


@pytest.mark.parametrize(
    "data",
    [
        b"{",
        b"[]",
        b'{"increment":-1,"list":{}}',
        b'{"increment":"1","list":{}}',
        b'{"increment":true,"list":{}}',
        b'{"increment":1,"list":[]}',
        b'{"increment":1,"list":{"0":{"created_at":"2024-01-01T10:00:00Z","display_name":"A","email":""}}}',
        b'{"increment":1,"list":{"01":{"created_at":"2024-01-01T10:00:00Z","display_name":"A","email":""}}}',
        b'{"increment":2,"list":{"3":{"created_at":"2024-01-01T10:00:00Z","display_name":"A","email":""}}}',
        b'{"increment":1,"list":{"1":{"created_at":"2024-01-01T10:00:00Z","display_name":"","email":""}}}',
        b'{"increment":1,"list":{"1":{"created_at":"yesterday","display_name":"A","email":""}}}',
        b'{"increment":1,"list":{"1":{"created_at":"2024-01-01T10:00:00Z","display_name":"A","email":5}}}',
        b'{"increment":1,"list":{"1":"Ada"}}',
    ],
)
def test_decode_rejects_malformed_snapshots(data: bytes) -> None:
    with pytest.raises(DecodingError):
        decode(data)


def test_encode_rejects_naive_timestamps() -> None:
    user = User(id="1", display_name="Ada", email="", created_at=datetime(2024, 1, 1))

    with pytest.raises(EncodingError):
        encode(StoreSnapshot(sequence=1, records={"1": user}))


def test_encode_rejects_key_that_differs_from_user_id() -> None:
    with pytest.raises(EncodingError):
        encode(StoreSnapshot(sequence=2, records={"1": _user("2")}))


def test_missing_file_loads_as_empty_snapshot(tmp_path: Path) -> None:
    snapshot_file = SnapshotFile(tmp_path / "users.json")

    assert snapshot_file.exists() is False
    assert snapshot_file.load() == StoreSnapshot()


def test_write_replaces_file_without_leaving_temporary_files(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "users.json"
    snapshot_file = SnapshotFile(path)

    snapshot_file.write(StoreSnapshot(sequence=1, records={"1": _user("1")}))
    snapshot_file.write(StoreSnapshot(sequence=2, records={"2": _user("2", "Grace")}))

    assert sorted(item.name for item in path.parent.iterdir()) == ["users.json"]
    loaded = snapshot_file.load()
    assert loaded.sequence == 2
    assert list(loaded.records) == ["2"]
    assert loaded.records["2"].display_name == "Grace"


def test_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    snapshot_file = SnapshotFile(blocker / "users.json")

    with pytest.raises(PersistenceError) as excinfo:
        snapshot_file.write(StoreSnapshot())

    assert excinfo.value.path == blocker / "users.json"


def test_read_failure_raises_persistence_error(tmp_path: Path) -> None:
    directory = tmp_path / "users.json"
    directory.mkdir()

    with pytest.raises(PersistenceError):
        SnapshotFile(directory).load()


def test_decode_keeps_blank_display_names_written_by_other_writers() -> None:
    snapshot = decode(
        b'{"increment":1,"list":{"1":{"created_at":"2024-01-01T10:00:00Z","display_name":" ","email":""}}}'
    )

    assert snapshot.records["1"].display_name == " "

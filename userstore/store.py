"""Thread-safe, file-backed store for user records."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .codec import PersistenceError, SnapshotFile
from .models import StoreSnapshot, User

logger = logging.getLogger("userstore.store")

EMPTY_DISPLAY_NAME = "empty_display_name"
INVALID_EMAIL = "invalid_email"


class StoreError(Exception):
    """Base class for errors reported by :class:`UserStore` operations."""


class UserNotFoundError(StoreError, KeyError):
    """Raised when the requested identifier is not present in the store."""

    def __init__(self, user_id: str) -> None:
        super().__init__("user not found")
        self.user_id = user_id

    def __str__(self) -> str:
        return "user not found"


class UserValidationError(StoreError, ValueError):
    """Raised when a field value violates its constraint."""

    def __init__(self, field: str, code: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.code = code


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_display_name(display_name: str) -> None:
    if not isinstance(display_name, str) or display_name == "":
        raise UserValidationError(
            "display_name",
            EMPTY_DISPLAY_NAME,
            "display name must not be empty",
        )


def _validate_email(email: str) -> None:
    if not isinstance(email, str):
        raise UserValidationError("email", INVALID_EMAIL, "email must be text")


class UserStore:
    """Authoritative in-memory user collection persisted as a single snapshot.

    Every operation runs under one exclusive lock. Mutations validate, update
    memory and write the full snapshot inside the same critical section, so
    no two writers interleave and readers never observe a half-applied change.
    """

    def __init__(
        self,
        snapshot_file: SnapshotFile,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._file = snapshot_file
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[StoreSnapshot] = None

    @property
    def path(self):
        return self._file.path

    def initialize(self) -> None:
        """Load the snapshot from disk, creating the file if it is missing."""

        with self._lock:
            if self._snapshot is not None:
                return
            existed = self._file.exists()
            snapshot = self._file.load()
            if not existed:
                self._file.write(snapshot)
                logger.info("Created empty user store at %s", self._file.path)
            self._snapshot = snapshot
            logger.info(
                "Loaded %d user(s) from %s (increment=%d)",
                len(snapshot.records),
                self._file.path,
                snapshot.sequence,
            )

    def _require_snapshot(self) -> StoreSnapshot:
        if self._snapshot is None:
            raise RuntimeError("User store has not been initialised")
        return self._snapshot

    def _persist_locked(self, snapshot: StoreSnapshot) -> None:
        try:
            self._file.write(snapshot)
        except PersistenceError:
            logger.error(
                "Failed to persist user store to %s; in-memory state is ahead of disk",
                self._file.path,
            )
            raise

    def get(self, user_id: str) -> User:
        with self._lock:
            snapshot = self._require_snapshot()
            try:
                return snapshot.records[user_id]
            except KeyError:
                raise UserNotFoundError(user_id) from None

    def list(self) -> List[User]:
        with self._lock:
            return list(self._require_snapshot().records.values())

    def snapshot(self) -> StoreSnapshot:
        """Return a consistent copy of the sequence counter and records."""

        with self._lock:
            return self._require_snapshot().copy()

    def create(self, display_name: str, email: str) -> str:
        """Create a user and return its newly assigned identifier."""

        with self._lock:
            snapshot = self._require_snapshot()
            _validate_display_name(display_name)
            _validate_email(email)

            snapshot.sequence += 1
            user_id = str(snapshot.sequence)
            snapshot.records[user_id] = User(
                id=user_id,
                display_name=display_name,
                email=email,
                created_at=self._clock(),
            )
            self._persist_locked(snapshot)

        logger.info("Created user %s", user_id)
        return user_id

    def update(self, user_id: str, display_name: str) -> None:
        """Replace the display name of an existing user."""

        with self._lock:
            snapshot = self._require_snapshot()
            existing = snapshot.records.get(user_id)
            if existing is None:
                raise UserNotFoundError(user_id)
            _validate_display_name(display_name)

            snapshot.records[user_id] = replace(existing, display_name=display_name)
            self._persist_locked(snapshot)

        logger.info("Updated user %s", user_id)

    def delete(self, user_id: str) -> None:
        with self._lock:
            snapshot = self._require_snapshot()
            if user_id not in snapshot.records:
                raise UserNotFoundError(user_id)

            del snapshot.records[user_id]
            self._persist_locked(snapshot)

        logger.info("Deleted user %s", user_id)


__all__ = [
    "EMPTY_DISPLAY_NAME",
    "INVALID_EMAIL",
    "StoreError",
    "UserNotFoundError",
    "UserStore",
    "UserValidationError",
]

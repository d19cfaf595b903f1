"""Domain models for the user record store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict


@dataclass(frozen=True)
class User:
    """Represents a user record held by the store."""

    id: str
    display_name: str
    email: str
    created_at: datetime


@dataclass
class StoreSnapshot:
    """The complete persisted state: sequence counter plus all records."""

    sequence: int = 0
    records: Dict[str, User] = field(default_factory=dict)

    def copy(self) -> "StoreSnapshot":
        return StoreSnapshot(sequence=self.sequence, records=dict(self.records))


__all__ = ["StoreSnapshot", "User"]

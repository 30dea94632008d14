"""Capabilities the engine consumes from its host application."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol

from .board import Bounds


class Entitlement(Protocol):
    def allows(self, backend: str) -> bool:
        """Whether the current caller may use `backend` (credit / plan check)."""
        ...


class AllowAll:
    def allows(self, backend: str) -> bool:
        return True


@dataclass(frozen=True)
class EquationRecord:
    recognized: str
    solution: str
    bounds: Bounds
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class EquationStore(Protocol):
    def save(self, record: EquationRecord) -> None: ...


class InMemoryEquationStore:
    def __init__(self) -> None:
        self.records: list[EquationRecord] = []

    def save(self, record: EquationRecord) -> None:
        self.records.append(record)

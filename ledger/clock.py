"""
Injected collaborators: the clock and the id generator.

The services never call datetime.now() or uuid4() directly, so the
recurrence due-check and generated ids are deterministic under test.
"""

import uuid
from datetime import date, datetime
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class IdGenerator(Protocol):
    def new_id(self) -> str: ...


class SystemClock:
    """Local wall-clock time. Calendar months follow the user's timezone."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return self.now().date()


class UUIDGenerator:
    def new_id(self) -> str:
        return uuid.uuid4().hex

"""Deferred resumptions: the contract with whatever fires them."""
import time
from dataclasses import dataclass
from typing import Callable, Protocol


def tick_key(job_id: str, resumption: int) -> str:
    """Logical key of the deferred resumption ``resumption`` of ``job_id``."""
    return f"dump-{job_id}-{resumption}"


@dataclass(frozen=True)
class Deferred:
    """Run resumption ``resumption`` of ``job_id`` no earlier than ``due_at``."""

    job_id: str
    resumption: int
    due_at: float

    @property
    def key(self) -> str:
        return tick_key(self.job_id, self.resumption)


class TickSource(Protocol):
    """Registers and retracts deferred resumptions.

    Scheduling the same (job, resumption) twice replaces the earlier entry.
    """

    def schedule_at(self, when: float, job_id: str, resumption: int) -> None:
        ...

    def cancel(self, job_id: str, resumption: int) -> bool:
        """Retract an entry; False if nothing was scheduled under that key."""
        ...

    def kick(self) -> int:
        """Fire whatever is already due. Returns the number fired."""
        ...


class MemoryTickSource:
    """In-process tick source, for tests and single-process use."""

    def __init__(
        self,
        handler: Callable[[str, int], object] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.handler = handler
        self.clock = clock
        self.entries: dict[str, Deferred] = {}

    def schedule_at(self, when: float, job_id: str, resumption: int) -> None:
        entry = Deferred(job_id, resumption, when)
        self.entries[entry.key] = entry

    def cancel(self, job_id: str, resumption: int) -> bool:
        return self.entries.pop(tick_key(job_id, resumption), None) is not None

    def pending(self, job_id: str | None = None) -> list[Deferred]:
        entries = [e for e in self.entries.values() if job_id is None or e.job_id == job_id]
        return sorted(entries, key=lambda e: (e.due_at, e.resumption))

    def pop_due(self, now: float | None = None) -> list[Deferred]:
        now = self.clock() if now is None else now
        due = [e for e in self.pending() if e.due_at <= now]
        for entry in due:
            del self.entries[entry.key]
        return due

    def kick(self) -> int:
        due = self.pop_due()
        if self.handler is not None:
            for entry in due:
                self.handler(entry.job_id, entry.resumption)
        return len(due)

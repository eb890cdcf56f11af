"""Previous/current snapshot bookkeeping."""

import time
from bisect import bisect_left
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from kvmtop.models import GlobalCpu, HostSummary
from kvmtop.source import CounterSource, ResourceClass

E = TypeVar("E")


@dataclass(slots=True, frozen=True)
class Snapshot(Generic[E]):
    """Entities of one resource class, sorted by identity key."""

    entities: tuple[E, ...]
    keys: tuple[Any, ...]
    captured_at: float  # Monotonic seconds

    @classmethod
    def from_entities(cls, entities: Iterable[E], captured_at: float) -> "Snapshot[E]":
        """Sort entities by key, keeping the first of any duplicated key."""
        ordered: list[E] = []
        keys: list[Hashable] = []
        for entity in sorted(entities, key=lambda e: e.key):
            if keys and keys[-1] == entity.key:
                continue
            ordered.append(entity)
            keys.append(entity.key)
        return cls(tuple(ordered), tuple(keys), captured_at)

    def lookup(self, key: Hashable) -> E | None:
        """Binary search for the entity with ``key``."""
        index = bisect_left(self.keys, key)
        if index < len(self.keys) and self.keys[index] == key:
            return self.entities[index]
        return None

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self):
        return iter(self.entities)


class SnapshotStore:
    """
    Holds the previous and current snapshot of every resource class.

    Each capture builds brand new records; previous-cycle records are only
    read for their values and are dropped on the next promotion.
    """

    def __init__(
        self,
        source: CounterSource,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._clock = clock
        self._previous: dict[ResourceClass, Snapshot] = {}
        self._current: dict[ResourceClass, Snapshot] = {}
        self.previous_cpu: GlobalCpu | None = None
        self.current_cpu: GlobalCpu | None = None
        self.host = HostSummary()

    def capture(self, resource: ResourceClass) -> Snapshot:
        """Populate and return a fresh current snapshot for ``resource``."""
        if resource is ResourceClass.THREADS:
            entities = self._source.threads()
        elif resource is ResourceClass.NETWORK:
            entities = self._source.interfaces()
        else:
            entities = self._source.disks()
        snapshot = Snapshot.from_entities(entities, self._clock())
        self._current[resource] = snapshot
        return snapshot

    def capture_all(self) -> None:
        """Capture every resource class plus the host-wide aggregates."""
        for resource in ResourceClass:
            self.capture(resource)
        self.current_cpu = self._source.global_cpu()
        self.host = self._source.host()

    def previous(self, resource: ResourceClass) -> Snapshot | None:
        """Snapshot promoted at the end of the last sampled cycle, if any."""
        return self._previous.get(resource)

    def current(self, resource: ResourceClass) -> Snapshot | None:
        """Snapshot captured in this cycle, or None before the first capture."""
        return self._current.get(resource)

    @staticmethod
    def lookup(snapshot: Snapshot[E] | None, key: Hashable) -> E | None:
        """Find ``key`` in ``snapshot``; a missing snapshot finds nothing."""
        if snapshot is None:
            return None
        return snapshot.lookup(key)

    def promote(self) -> None:
        """Make the current snapshots the previous ones and start empty."""
        self._previous.update(self._current)
        self._current = {}
        if self.current_cpu is not None:
            self.previous_cpu = self.current_cpu
        self.current_cpu = None

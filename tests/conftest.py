"""Shared test fixtures for kvmtop."""

import copy
from collections.abc import Sequence

import pytest

from kvmtop.models import DiskSample, GlobalCpu, HostSummary, NetIfaceSample, ThreadSample


def make_thread(tid: int = 100, tgid: int | None = None, **kwargs) -> ThreadSample:
    """Create a ThreadSample; the TGID defaults to the thread id."""
    kwargs.setdefault("command", f"/usr/bin/proc-{tid}")
    kwargs.setdefault("user", "root")
    kwargs.setdefault("state", "S")
    return ThreadSample(tid=tid, tgid=tid if tgid is None else tgid, **kwargs)


class FakeSource:
    """
    Counter source returning scripted cycles.

    Each call returns fresh copies of the next cycle's records; the last
    cycle repeats once the script runs out.
    """

    def __init__(
        self,
        threads: Sequence[Sequence[ThreadSample]] = ((),),
        interfaces: Sequence[Sequence[NetIfaceSample]] = ((),),
        disks: Sequence[Sequence[DiskSample]] = ((),),
        cpu: Sequence[GlobalCpu] = (GlobalCpu(),),
        host: HostSummary | None = None,
    ) -> None:
        self._threads = list(threads)
        self._interfaces = list(interfaces)
        self._disks = list(disks)
        self._cpu = list(cpu)
        self._host = host or HostSummary(cpu_count=4, memory_total=8 * 1024**3)
        self.calls = {"threads": 0, "interfaces": 0, "disks": 0, "cpu": 0}

    @staticmethod
    def _pick(script: list, index: int):
        return copy.deepcopy(script[min(index, len(script) - 1)])

    def threads(self) -> list[ThreadSample]:
        self.calls["threads"] += 1
        return list(self._pick(self._threads, self.calls["threads"] - 1))

    def interfaces(self) -> list[NetIfaceSample]:
        self.calls["interfaces"] += 1
        return list(self._pick(self._interfaces, self.calls["interfaces"] - 1))

    def disks(self) -> list[DiskSample]:
        self.calls["disks"] += 1
        return list(self._pick(self._disks, self.calls["disks"] - 1))

    def global_cpu(self) -> GlobalCpu:
        self.calls["cpu"] += 1
        return self._pick(self._cpu, self.calls["cpu"] - 1)

    def host(self) -> HostSummary:
        return self._host


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)


class ScriptedKeys:
    """
    Key source replaying ``(time, key)`` events against a fake clock.

    A wait that ends before the next event advances the clock by the full
    timeout and returns None. Once the script is exhausted it answers "q" so
    the loop under test always terminates.
    """

    def __init__(self, clock: FakeClock, events: Sequence[tuple[float, str]] = ()) -> None:
        self.clock = clock
        self.events = list(events)
        self.timeouts: list[float | None] = []

    async def read_key(self, timeout: float | None) -> str | None:
        self.timeouts.append(timeout)
        if not self.events:
            return "q"
        at, key = self.events[0]
        if timeout is not None and at > self.clock.now + timeout:
            self.clock.advance(timeout)
            return None
        self.events.pop(0)
        self.clock.now = max(self.clock.now, at)
        return key


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

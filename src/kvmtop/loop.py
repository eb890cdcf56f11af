"""Sampling cadence and the interactive refresh loop."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

import structlog

from kvmtop.aggregate import aggregate_processes
from kvmtop.input import InputController
from kvmtop.models import DiskSample, HostSummary, NetIfaceSample, ThreadSample
from kvmtop.rates import RateComputer, global_cpu_percent
from kvmtop.session import InputMode, SessionState
from kvmtop.snapshot import SnapshotStore
from kvmtop.source import ResourceClass

log = structlog.get_logger()

# Gap between the baseline capture and the first displayed sample
BASELINE_SETTLE = 0.5


class KeySource(Protocol):
    """Delivers single keystrokes."""

    async def read_key(self, timeout: float | None) -> str | None:
        """Wait up to ``timeout`` seconds (forever if None) for one key."""
        ...


@dataclass(slots=True)
class Frame:
    """Rate-annotated data for one sampling cycle."""

    threads: list[ThreadSample] = field(default_factory=list)
    processes: list[ThreadSample] = field(default_factory=list)
    interfaces: list[NetIfaceSample] = field(default_factory=list)
    disks: list[DiskSample] = field(default_factory=list)
    cpu_percent: float = 0.0
    host: HostSummary = field(default_factory=HostSummary)


class MainLoop:
    """
    Drives sampling and redraws on one event loop.

    Samples once per refresh interval. Between samples it waits for
    keystrokes, redrawing immediately after any key that changes the view,
    but never waits past the next scheduled sample.
    """

    def __init__(
        self,
        store: SnapshotStore,
        session: SessionState,
        keys: KeySource,
        render: Callable[[Frame, SessionState], None],
        computer: RateComputer | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        settle: float = BASELINE_SETTLE,
    ) -> None:
        self.store = store
        self.session = session
        self.controller = InputController(session)
        self.computer = computer or RateComputer()
        self.frame = Frame()
        self.cycles = 0
        self._keys = keys
        self._render = render
        self._clock = clock
        self._sleep = sleep
        self._settle = settle

    def sample(self) -> Frame:
        """Capture every resource class and derive this cycle's frame."""
        store = self.store
        interval = self.session.interval
        store.capture_all()

        threads = store.current(ResourceClass.THREADS)
        interfaces = store.current(ResourceClass.NETWORK)
        disks = store.current(ResourceClass.STORAGE)
        self.computer.threads(store.previous(ResourceClass.THREADS), threads, interval)
        self.computer.interfaces(store.previous(ResourceClass.NETWORK), interfaces, interval)
        self.computer.disks(store.previous(ResourceClass.STORAGE), disks, interval)

        self.frame = Frame(
            threads=list(threads),
            processes=aggregate_processes(threads),
            interfaces=list(interfaces),
            disks=list(disks),
            cpu_percent=global_cpu_percent(store.previous_cpu, store.current_cpu),
            host=store.host,
        )
        self.cycles += 1
        log.debug(
            "sample_cycle",
            cycle=self.cycles,
            threads=len(threads),
            interfaces=len(interfaces),
            disks=len(disks),
        )
        return self.frame

    async def run(self) -> None:
        """Run until the session asks to quit.

        A baseline is captured and promoted before the first cycle, so the
        first frame already shows rates over the settle period.
        """
        session = self.session
        self.store.capture_all()
        self.store.promote()
        await self._sleep(min(self._settle, session.interval))
        while not session.quit:
            cycle_start = self._clock()
            sampled = not session.frozen
            if sampled:
                self.sample()
            await self._interact(cycle_start)
            if sampled:
                self.store.promote()

    async def _interact(self, cycle_start: float) -> None:
        session = self.session
        dirty = True
        while True:
            if dirty:
                self._render(self.frame, session)
                dirty = False
            if session.quit:
                return

            if session.mode is InputMode.HELP:
                key = await self._keys.read_key(None)
            else:
                remaining = session.interval - (self._clock() - cycle_start)
                if remaining <= 0:
                    return
                key = await self._keys.read_key(remaining)

            if key is not None:
                dirty = self.controller.handle(key)

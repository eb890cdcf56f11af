"""Conversion of cumulative counters into per-second rates."""

from kvmtop.models import CLOCK_TICKS, DiskSample, GlobalCpu, NetIfaceSample, ThreadSample
from kvmtop.snapshot import Snapshot

MIB = 1024.0 * 1024.0
MEGABIT = 1_000_000.0
SECTOR_SIZE = 512


def counter_delta(previous: float, current: float) -> float:
    """Increase of a monotonic counter; a reset or restart counts as zero."""
    return current - previous if current >= previous else 0


def global_cpu_percent(previous: GlobalCpu | None, current: GlobalCpu | None) -> float:
    """Busy share of all CPU time elapsed between two host-wide readings."""
    if previous is None or current is None:
        return 0.0
    total = counter_delta(previous.total, current.total)
    if total <= 0:
        return 0.0
    idle = min(counter_delta(previous.idle, current.idle), total)
    return (total - idle) / total * 100.0


class RateComputer:
    """
    Attaches rate fields to every entity of a current snapshot.

    Entities are matched against the previous snapshot by key. An entity
    with no previous match keeps zero rates for this cycle.
    """

    def __init__(self, ticks_per_second: int = CLOCK_TICKS) -> None:
        self.ticks_per_second = ticks_per_second

    @staticmethod
    def elapsed(previous: Snapshot | None, current: Snapshot, interval: float) -> float:
        """Seconds between two captures, or ``interval`` when not positive."""
        if previous is None:
            return interval
        dt = current.captured_at - previous.captured_at
        return dt if dt > 0 else interval

    def threads(
        self,
        previous: Snapshot[ThreadSample] | None,
        current: Snapshot[ThreadSample],
        interval: float,
    ) -> None:
        """Annotate every thread also present in ``previous`` with its rates.

        Threads new in ``current`` keep zero rates until the next cycle.
        """
        dt = self.elapsed(previous, current, interval)
        for c in current:
            p = previous.lookup(c.key) if previous is not None else None
            if p is None:
                continue
            c.cpu_percent = counter_delta(p.cpu_ticks, c.cpu_ticks) * 100.0 / (
                dt * self.ticks_per_second
            )
            c.read_iops = counter_delta(p.syscr, c.syscr) / dt
            c.write_iops = counter_delta(p.syscw, c.syscw) / dt
            c.read_mib = counter_delta(p.read_bytes, c.read_bytes) / dt / MIB
            c.write_mib = counter_delta(p.write_bytes, c.write_bytes) / dt / MIB
            # Wait accumulated over the interval, not normalised per second
            c.io_wait_ms = (
                counter_delta(p.blkio_ticks, c.blkio_ticks) * 1000.0 / self.ticks_per_second
            )
            c.minflt_ps = counter_delta(p.minflt, c.minflt) / dt
            c.majflt_ps = counter_delta(p.majflt, c.majflt) / dt

    def interfaces(
        self,
        previous: Snapshot[NetIfaceSample] | None,
        current: Snapshot[NetIfaceSample],
        interval: float,
    ) -> None:
        """Per-second traffic for interfaces seen in both snapshots."""
        dt = self.elapsed(previous, current, interval)
        for c in current:
            p = previous.lookup(c.key) if previous is not None else None
            if p is None:
                continue
            c.rx_mbps = counter_delta(p.rx_bytes, c.rx_bytes) * 8.0 / (dt * MEGABIT)
            c.tx_mbps = counter_delta(p.tx_bytes, c.tx_bytes) * 8.0 / (dt * MEGABIT)
            c.rx_pps = counter_delta(p.rx_packets, c.rx_packets) / dt
            c.tx_pps = counter_delta(p.tx_packets, c.tx_packets) / dt
            c.rx_errs_ps = counter_delta(p.rx_errors, c.rx_errors) / dt
            c.tx_errs_ps = counter_delta(p.tx_errors, c.tx_errors) / dt

    def disks(
        self,
        previous: Snapshot[DiskSample] | None,
        current: Snapshot[DiskSample],
        interval: float,
    ) -> None:
        """Per-second disk rates; latency is averaged per completed operation."""
        dt = self.elapsed(previous, current, interval)
        for c in current:
            p = previous.lookup(c.key) if previous is not None else None
            if p is None:
                continue
            reads = counter_delta(p.reads, c.reads)
            writes = counter_delta(p.writes, c.writes)
            c.read_iops = reads / dt
            c.write_iops = writes / dt
            c.read_mib = counter_delta(p.read_sectors, c.read_sectors) * SECTOR_SIZE / (dt * MIB)
            c.write_mib = (
                counter_delta(p.write_sectors, c.write_sectors) * SECTOR_SIZE / (dt * MIB)
            )
            c.read_latency_ms = (
                counter_delta(p.read_time_ms, c.read_time_ms) / reads if reads > 0 else 0.0
            )
            c.write_latency_ms = (
                counter_delta(p.write_time_ms, c.write_time_ms) / writes if writes > 0 else 0.0
            )
            busy = counter_delta(p.io_ticks, c.io_ticks)
            c.util_percent = min(busy / (dt * 1000.0) * 100.0, 100.0)

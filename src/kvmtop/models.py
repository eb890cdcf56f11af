"""Data models for kvmtop."""

import os
from dataclasses import dataclass

CLOCK_TICKS: int = os.sysconf("SC_CLK_TCK")
PAGE_SIZE: int = os.sysconf("SC_PAGE_SIZE")


@dataclass(slots=True)
class ThreadSample:
    """Counters for one thread, or one process row after aggregation.

    Cumulative counters are read once per cycle; the rate fields stay at zero
    until the rate computer attaches them.
    """

    tid: int
    tgid: int
    command: str = ""
    user: str = "?"
    state: str = "?"  # 'R', 'S', 'D', 'Z', etc.

    cpu_ticks: int = 0  # utime + stime
    syscr: int = 0
    syscw: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    blkio_ticks: int = 0
    minflt: int = 0
    majflt: int = 0
    start_time_ticks: int = 0

    mem_virt_pages: int = 0
    mem_res_pages: int = 0
    mem_shr_pages: int = 0

    cpu_percent: float = 0.0
    read_iops: float = 0.0
    write_iops: float = 0.0
    io_wait_ms: float = 0.0
    read_mib: float = 0.0
    write_mib: float = 0.0
    minflt_ps: float = 0.0
    majflt_ps: float = 0.0

    thread_count: int = 1

    @property
    def key(self) -> int:
        return self.tid


@dataclass(slots=True)
class NetIfaceSample:
    """Counters for one network interface."""

    name: str
    operstate: str = "?"
    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0
    rx_errors: int = 0
    tx_errors: int = 0

    vm_id: int | None = None
    vm_name: str = ""

    rx_mbps: float = 0.0
    tx_mbps: float = 0.0
    rx_pps: float = 0.0
    tx_pps: float = 0.0
    rx_errs_ps: float = 0.0
    tx_errs_ps: float = 0.0

    @property
    def key(self) -> str:
        return self.name


@dataclass(slots=True)
class DiskSample:
    """Counters for one block device."""

    name: str
    reads: int = 0
    writes: int = 0
    read_sectors: int = 0
    write_sectors: int = 0
    read_time_ms: int = 0
    write_time_ms: int = 0
    io_ticks: int = 0  # ms spent doing I/O
    inflight: int = 0
    queue_depth: int = 0

    read_iops: float = 0.0
    write_iops: float = 0.0
    read_mib: float = 0.0
    write_mib: float = 0.0
    read_latency_ms: float = 0.0
    write_latency_ms: float = 0.0
    util_percent: float = 0.0

    @property
    def key(self) -> str:
        return self.name


@dataclass(slots=True, frozen=True)
class GlobalCpu:
    """Host-wide cumulative CPU time breakdown."""

    user: float = 0
    nice: float = 0
    system: float = 0
    idle: float = 0
    iowait: float = 0
    irq: float = 0
    softirq: float = 0
    steal: float = 0

    @property
    def total(self) -> float:
        return (
            self.user
            + self.nice
            + self.system
            + self.idle
            + self.iowait
            + self.irq
            + self.softirq
            + self.steal
        )


@dataclass(slots=True, frozen=True)
class HostSummary:
    """Point-in-time host gauges shown in the header."""

    cpu_count: int = 0
    memory_total: int = 0  # Bytes
    memory_used: int = 0
    swap_total: int = 0
    swap_used: int = 0
    uptime_seconds: float = 0.0

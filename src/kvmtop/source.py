"""Counter extraction from procfs, sysfs and psutil.

Every method returns fresh sample records holding cumulative counters only;
rates are attached later by :mod:`kvmtop.rates`. Entities that vanish between
enumeration and detail reads are skipped, optional files that cannot be read
leave their counters at zero, and malformed fields are zeroed one at a time.
"""

import os
import pwd
import re
import time
from collections.abc import Iterable, Sequence
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Protocol

import psutil
import structlog

from kvmtop.models import DiskSample, GlobalCpu, HostSummary, NetIfaceSample, ThreadSample

log = structlog.get_logger()

CMD_MAX = 512
SECTOR_SIZE = 512

# Indexes into /proc/<pid>/stat, counted from the state field after ')'
_STAT_STATE = 0
_STAT_MINFLT = 7
_STAT_MAJFLT = 9
_STAT_UTIME = 11
_STAT_STIME = 12
_STAT_STARTTIME = 19
_STAT_BLKIO = 39

_IO_FIELDS = ("syscr", "syscw", "read_bytes", "write_bytes")

# Expected per-entity failures: the entity exited or we lack privileges
_VANISHED = (FileNotFoundError, ProcessLookupError, NotADirectoryError)


class SourceUnavailableError(RuntimeError):
    """Raised when the counter source cannot be used at all."""


class ResourceClass(Enum):
    """Entity collections sampled every cycle."""

    THREADS = "threads"
    NETWORK = "network"
    STORAGE = "storage"


class CounterSource(Protocol):
    """Yields the current counter records for each resource class."""

    def threads(self) -> list[ThreadSample]: ...

    def interfaces(self) -> list[NetIfaceSample]: ...

    def disks(self) -> list[DiskSample]: ...

    def global_cpu(self) -> GlobalCpu: ...

    def host(self) -> HostSummary: ...


def _int_field(tokens: Sequence[str], index: int) -> int:
    try:
        return int(tokens[index])
    except (IndexError, ValueError):
        return 0


def parse_stat(text: str) -> dict[str, int | str] | None:
    """Parse the fields kvmtop needs from a /proc stat line.

    Returns None when the line has no command terminator at all; individual
    unparseable fields become zero.
    """
    rparen = text.rfind(")")
    if rparen < 0:
        return None
    tokens = text[rparen + 1 :].split()
    state = tokens[_STAT_STATE][:1] if tokens else "?"
    return {
        "state": state or "?",
        "minflt": _int_field(tokens, _STAT_MINFLT),
        "majflt": _int_field(tokens, _STAT_MAJFLT),
        "cpu_ticks": _int_field(tokens, _STAT_UTIME) + _int_field(tokens, _STAT_STIME),
        "start_time_ticks": _int_field(tokens, _STAT_STARTTIME),
        "blkio_ticks": _int_field(tokens, _STAT_BLKIO),
    }


def parse_io(text: str) -> dict[str, int]:
    """Parse syscall and byte counters from a /proc io file."""
    counters = dict.fromkeys(_IO_FIELDS, 0)
    for line in text.splitlines():
        name, _, value = line.partition(":")
        name = name.strip()
        if name not in _IO_FIELDS:
            continue
        try:
            counters[name] = int(value.strip())
        except ValueError:
            continue
    return counters


def parse_statm(text: str) -> tuple[int, int, int]:
    """Return (virtual, resident, shared) pages from a statm line."""
    tokens = text.split()
    if len(tokens) < 2:
        return 0, 0, 0
    return _int_field(tokens, 0), _int_field(tokens, 1), _int_field(tokens, 2)


def sanitize_command(raw: str) -> str:
    """Collapse separators and replace unprintable characters in a command line."""
    out: list[str] = []
    prev_space = True
    for ch in raw:
        if ch in "\0\n\r\t":
            ch = " "
        if ch == " ":
            if not prev_space:
                out.append(" ")
            prev_space = True
            continue
        prev_space = False
        if ch == '"':
            ch = "'"
        elif not ch.isprintable():
            ch = "?"
        out.append(ch)
        if len(out) >= CMD_MAX - 1:
            break
    return "".join(out).rstrip()


_VM_ID = re.compile(r"\s-id\s+(\d+)")
_VM_NAME = re.compile(r"\s-name\s+([^\s,]+)")
_VM_IFNAME = re.compile(r"ifname=([^\s,]+)")


def annotate_vm_interfaces(
    interfaces: Iterable[NetIfaceSample], cmdlines: Iterable[str]
) -> None:
    """Tag tap interfaces with the id and name of the qemu/kvm VM using them."""
    by_name = {iface.name: iface for iface in interfaces}
    for cmd in cmdlines:
        if "kvm" not in cmd and "qemu" not in cmd:
            continue
        id_match = _VM_ID.search(cmd)
        name_match = _VM_NAME.search(cmd)
        for ifname in _VM_IFNAME.findall(cmd):
            iface = by_name.get(ifname)
            if iface is None:
                continue
            iface.vm_id = int(id_match.group(1)) if id_match else None
            iface.vm_name = name_match.group(1) if name_match else ""


class ProcfsSource:
    """
    Counter source for a Linux host.

    Thread counters come straight from /proc because psutil has no per-thread
    I/O or fault counters; network, disk and host-wide figures use psutil.
    """

    def __init__(
        self,
        pids: Sequence[int] | None = None,
        disk_exclude: Sequence[str] = ("loop*", "ram*"),
        proc_root: Path = Path("/proc"),
        sys_root: Path = Path("/sys"),
    ) -> None:
        """
        Initialize the source.

        Args:
            pids: Restrict thread sampling to these process ids (TGIDs).
            disk_exclude: fnmatch patterns of block devices never collected.
            proc_root: Location of procfs.
            sys_root: Location of sysfs.
        """
        self._pids = frozenset(pids) if pids else None
        self._disk_exclude = tuple(disk_exclude)
        self._proc = proc_root
        self._sys = sys_root
        self._users: dict[int, str] = {}

    def check(self) -> None:
        """Fail early when procfs is not available."""
        if not self._proc.is_dir():
            raise SourceUnavailableError(f"{self._proc} is not available")

    # -- threads ---------------------------------------------------------

    def _process_ids(self) -> Iterable[int]:
        try:
            names = os.listdir(self._proc)
        except OSError as e:
            raise SourceUnavailableError(f"cannot list {self._proc}: {e}") from e
        for name in names:
            if not name.isdigit():
                continue
            pid = int(name)
            if self._pids is None or pid in self._pids:
                yield pid

    def threads(self) -> list[ThreadSample]:
        samples: list[ThreadSample] = []
        for pid in self._process_ids():
            samples.extend(self._process_threads(pid))
        return samples

    def _process_threads(self, pid: int) -> list[ThreadSample]:
        base = self._proc / str(pid)
        command = self._read_command(base, pid)
        user = self._user(base)
        try:
            tids = [int(n) for n in os.listdir(base / "task") if n.isdigit()]
        except _VANISHED:
            log.debug("entity_skipped", pid=pid, reason="vanished")
            return []
        except PermissionError:
            tids = []

        if not tids:
            sample = self._read_thread(base, pid, pid, command, user)
            return [sample] if sample is not None else []

        samples = []
        for tid in tids:
            sample = self._read_thread(base / "task" / str(tid), tid, pid, command, user)
            if sample is not None:
                samples.append(sample)
        return samples

    def _read_thread(
        self, path: Path, tid: int, tgid: int, command: str, user: str
    ) -> ThreadSample | None:
        try:
            stat = parse_stat((path / "stat").read_text(errors="replace"))
        except (*_VANISHED, PermissionError):
            log.debug("entity_skipped", pid=tgid, tid=tid, reason="stat unreadable")
            return None
        if stat is None:
            log.debug("entity_skipped", pid=tgid, tid=tid, reason="malformed stat")
            return None

        io = parse_io(self._read_optional(path / "io"))
        virt, res, shr = parse_statm(self._read_optional(path / "statm"))

        return ThreadSample(
            tid=tid,
            tgid=tgid,
            command=command,
            user=user,
            state=str(stat["state"]),
            cpu_ticks=int(stat["cpu_ticks"]),
            syscr=io["syscr"],
            syscw=io["syscw"],
            read_bytes=io["read_bytes"],
            write_bytes=io["write_bytes"],
            blkio_ticks=int(stat["blkio_ticks"]),
            minflt=int(stat["minflt"]),
            majflt=int(stat["majflt"]),
            start_time_ticks=int(stat["start_time_ticks"]),
            mem_virt_pages=virt,
            mem_res_pages=res,
            mem_shr_pages=shr,
        )

    @staticmethod
    def _read_optional(path: Path) -> str:
        try:
            return path.read_text(errors="replace")
        except OSError:
            return ""

    def _read_command(self, base: Path, pid: int) -> str:
        cmdline = self._read_optional(base / "cmdline")
        command = sanitize_command(cmdline)
        if command:
            return command
        command = sanitize_command(self._read_optional(base / "comm"))
        if command:
            return command
        stat = self._read_optional(base / "stat")
        start, end = stat.find("("), stat.rfind(")")
        if 0 <= start < end:
            return stat[start + 1 : end][: CMD_MAX - 1]
        return f"[{pid}]"

    def _user(self, base: Path) -> str:
        try:
            uid = base.stat().st_uid
        except OSError:
            return "?"
        name = self._users.get(uid)
        if name is None:
            try:
                name = pwd.getpwuid(uid).pw_name
            except KeyError:
                name = str(uid)
            self._users[uid] = name
        return name

    # -- network ---------------------------------------------------------

    def interfaces(self) -> list[NetIfaceSample]:
        counters = psutil.net_io_counters(pernic=True, nowrap=False) or {}
        interfaces = [
            NetIfaceSample(
                name=name,
                operstate=self._operstate(name),
                rx_bytes=c.bytes_recv,
                tx_bytes=c.bytes_sent,
                rx_packets=c.packets_recv,
                tx_packets=c.packets_sent,
                rx_errors=c.errin,
                tx_errors=c.errout,
            )
            for name, c in counters.items()
        ]
        annotate_vm_interfaces(interfaces, self._vm_cmdlines())
        return interfaces

    def _operstate(self, name: str) -> str:
        state = self._read_optional(self._sys / "class" / "net" / name / "operstate").strip()
        return state or "?"

    @staticmethod
    def _vm_cmdlines() -> Iterable[str]:
        for proc in psutil.process_iter(attrs=["cmdline"]):
            cmdline = proc.info.get("cmdline")
            if cmdline:
                # Leading space so " -id " matches as the first option too
                yield " " + " ".join(cmdline)

    # -- storage ---------------------------------------------------------

    def disks(self) -> list[DiskSample]:
        counters = psutil.disk_io_counters(perdisk=True, nowrap=False) or {}
        disks = []
        for name, c in counters.items():
            if any(fnmatch(name, pattern) for pattern in self._disk_exclude):
                continue
            disks.append(
                DiskSample(
                    name=name,
                    reads=c.read_count,
                    writes=c.write_count,
                    read_sectors=c.read_bytes // SECTOR_SIZE,
                    write_sectors=c.write_bytes // SECTOR_SIZE,
                    read_time_ms=c.read_time,
                    write_time_ms=c.write_time,
                    io_ticks=getattr(c, "busy_time", 0),
                    inflight=self._inflight(name),
                    queue_depth=self._queue_depth(name),
                )
            )
        return disks

    def _inflight(self, name: str) -> int:
        text = self._read_optional(self._sys / "class" / "block" / name / "inflight")
        return sum(_int_field(text.split(), i) for i in range(2))

    def _queue_depth(self, name: str) -> int:
        text = self._read_optional(self._sys / "block" / name / "queue" / "nr_requests")
        return _int_field(text.split(), 0)

    # -- host ------------------------------------------------------------

    def global_cpu(self) -> GlobalCpu:
        times = psutil.cpu_times()
        return GlobalCpu(
            user=times.user,
            nice=getattr(times, "nice", 0),
            system=times.system,
            idle=times.idle,
            iowait=getattr(times, "iowait", 0),
            irq=getattr(times, "irq", 0),
            softirq=getattr(times, "softirq", 0),
            steal=getattr(times, "steal", 0),
        )

    def host(self) -> HostSummary:
        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()
        return HostSummary(
            cpu_count=psutil.cpu_count() or 0,
            memory_total=mem.total,
            memory_used=mem.used,
            swap_total=swap.total,
            swap_used=swap.used,
            uptime_seconds=time.time() - psutil.boot_time(),
        )

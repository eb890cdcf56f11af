"""Tests for counter extraction from procfs, sysfs and psutil."""

from pathlib import Path
from types import SimpleNamespace

import psutil
import pytest

from kvmtop.models import NetIfaceSample
from kvmtop.rates import RateComputer
from kvmtop.snapshot import Snapshot
from kvmtop.source import (
    CMD_MAX,
    ProcfsSource,
    SourceUnavailableError,
    annotate_vm_interfaces,
    parse_io,
    parse_stat,
    parse_statm,
    sanitize_command,
)


def stat_line(
    pid: int,
    comm: str = "proc",
    state: str = "S",
    minflt: int = 0,
    majflt: int = 0,
    utime: str | int = 0,
    stime: int = 0,
    start: int = 0,
    blkio: int = 0,
) -> str:
    """Build a /proc stat line with the given counters and zeros elsewhere."""
    fields = ["0"] * 49
    fields[7] = str(minflt)
    fields[9] = str(majflt)
    fields[11] = str(utime)
    fields[12] = str(stime)
    fields[19] = str(start)
    fields[39] = str(blkio)
    return f"{pid} ({comm}) {state} " + " ".join(fields[1:]) + "\n"


IO_TEXT = """\
rchar: 1000
wchar: 2000
syscr: 11
syscw: 22
read_bytes: 4096
write_bytes: 8192
cancelled_write_bytes: 0
"""


def make_process(
    root: Path,
    pid: int,
    tids: tuple[int, ...] = (),
    cmdline: str = "",
    comm: str = "",
    io: str | None = IO_TEXT,
    statm: str | None = "100 50 10 1 0 20 0\n",
    **stat,
) -> Path:
    """Create /proc/<pid> with a task entry per thread."""
    base = root / str(pid)
    base.mkdir(parents=True)
    (base / "cmdline").write_text(cmdline)
    (base / "comm").write_text(comm)
    (base / "stat").write_text(stat_line(pid, **stat))
    for tid in tids or (pid,):
        task = base / "task" / str(tid)
        task.mkdir(parents=True)
        (task / "stat").write_text(stat_line(tid, **stat))
        if io is not None:
            (task / "io").write_text(io)
        if statm is not None:
            (task / "statm").write_text(statm)
    return base


class TestParsers:
    """Tests for the pure /proc file parsers."""

    def test_parse_stat_fields(self):
        """Test extraction of state, faults, CPU ticks, start time and I/O wait."""
        line = stat_line(7, state="R", minflt=5, majflt=2, utime=30, stime=12, start=900, blkio=4)

        stat = parse_stat(line)

        assert stat == {
            "state": "R",
            "minflt": 5,
            "majflt": 2,
            "cpu_ticks": 42,
            "start_time_ticks": 900,
            "blkio_ticks": 4,
        }

    def test_parse_stat_command_with_parentheses(self):
        """Test that a command containing ') ' does not shift the fields."""
        stat = parse_stat(stat_line(7, comm="evil) S 1 (x", state="D", utime=3))

        assert stat["state"] == "D"
        assert stat["cpu_ticks"] == 3

    def test_parse_stat_malformed_field_becomes_zero(self):
        """Test that one unparseable field is zeroed without losing the rest."""
        stat = parse_stat(stat_line(7, utime="garbage", stime=9, minflt=3))

        assert stat["cpu_ticks"] == 9
        assert stat["minflt"] == 3

    def test_parse_stat_truncated_line(self):
        """Test that missing trailing fields read as zero."""
        stat = parse_stat("7 (proc) S 1 2")

        assert stat["state"] == "S"
        assert stat["blkio_ticks"] == 0

    def test_parse_stat_without_terminator(self):
        """Test that a line with no command terminator is rejected."""
        assert parse_stat("7 (proc S 1 2") is None

    def test_parse_io(self):
        """Test syscall and byte counters from an io file."""
        assert parse_io(IO_TEXT) == {
            "syscr": 11,
            "syscw": 22,
            "read_bytes": 4096,
            "write_bytes": 8192,
        }

    def test_parse_io_bad_value(self):
        """Test that a malformed io line leaves its counter at zero."""
        counters = parse_io("syscr: lots\nsyscw: 3\n")

        assert counters["syscr"] == 0
        assert counters["syscw"] == 3

    def test_parse_statm(self):
        """Test virtual, resident and shared page counts."""
        assert parse_statm("100 50 10 1 0 20 0\n") == (100, 50, 10)
        assert parse_statm("") == (0, 0, 0)


class TestSanitizeCommand:
    """Tests for command line cleanup."""

    def test_nul_separators_become_spaces(self):
        """Test that argv separators collapse into single spaces."""
        assert sanitize_command("qemu\0-name\0vm1\0") == "qemu -name vm1"

    def test_quotes_and_control_characters(self):
        """Test that quotes are softened and unprintables replaced."""
        assert sanitize_command('echo "hi"\x07') == "echo 'hi'?"

    def test_length_is_bounded(self):
        """Test that very long command lines are truncated."""
        assert len(sanitize_command("x" * 5000)) == CMD_MAX - 1

    def test_empty(self):
        """Test that an empty command line stays empty."""
        assert sanitize_command("\0\0") == ""


class TestVmAnnotation:
    """Tests for tying tap interfaces to VMs."""

    def test_tap_interface_gets_vm_identity(self):
        """Test that ifname= in a qemu command line tags the interface."""
        tap = NetIfaceSample(name="tap101i0")
        eth = NetIfaceSample(name="eth0")
        cmd = " /usr/bin/kvm -id 101 -name web01,debug-threads=on -netdev tap,ifname=tap101i0"

        annotate_vm_interfaces([tap, eth], [cmd])

        assert tap.vm_id == 101
        assert tap.vm_name == "web01"
        assert eth.vm_id is None

    def test_non_vm_processes_ignored(self):
        """Test that only qemu/kvm command lines are considered."""
        tap = NetIfaceSample(name="tap5")

        annotate_vm_interfaces([tap], [" /usr/bin/other -id 5 ifname=tap5"])

        assert tap.vm_id is None


class TestProcfsThreads:
    """Tests for thread sampling from a procfs tree."""

    def test_reads_every_thread(self, tmp_path):
        """Test one record per task, each carrying the process TGID."""
        make_process(tmp_path, 100, tids=(100, 101), cmdline="qemu\0-name\0vm1\0", utime=10)

        threads = ProcfsSource(proc_root=tmp_path).threads()

        assert sorted(t.tid for t in threads) == [100, 101]
        assert {t.tgid for t in threads} == {100}
        assert all(t.command == "qemu -name vm1" for t in threads)
        t = threads[0]
        assert t.cpu_ticks == 10
        assert t.syscr == 11
        assert t.write_bytes == 8192
        assert (t.mem_virt_pages, t.mem_res_pages, t.mem_shr_pages) == (100, 50, 10)
        assert t.user != "?"

    def test_ignores_non_numeric_entries(self, tmp_path):
        """Test that /proc entries other than processes are skipped."""
        make_process(tmp_path, 1)
        (tmp_path / "self").mkdir()
        (tmp_path / "meminfo").write_text("MemTotal: 1 kB\n")

        threads = ProcfsSource(proc_root=tmp_path).threads()

        assert [t.tid for t in threads] == [1]

    def test_vanished_thread_is_skipped(self, tmp_path):
        """Test that a thread whose stat disappeared is left out."""
        base = make_process(tmp_path, 200, tids=(200, 201))
        (base / "task" / "201" / "stat").unlink()

        threads = ProcfsSource(proc_root=tmp_path).threads()

        assert [t.tid for t in threads] == [200]

    def test_missing_optional_files_read_as_zero(self, tmp_path):
        """Test that an unreadable io or statm file zeroes its counters only."""
        make_process(tmp_path, 300, io=None, statm=None, utime=7)

        (thread,) = ProcfsSource(proc_root=tmp_path).threads()

        assert thread.cpu_ticks == 7
        assert thread.syscr == 0
        assert thread.read_bytes == 0
        assert thread.mem_res_pages == 0

    def test_pid_filter(self, tmp_path):
        """Test that only the requested processes are sampled."""
        make_process(tmp_path, 1)
        make_process(tmp_path, 2, tids=(2, 3))

        threads = ProcfsSource(pids=[2], proc_root=tmp_path).threads()

        assert sorted(t.tid for t in threads) == [2, 3]

    def test_command_falls_back_to_comm(self, tmp_path):
        """Test that kernel threads without a command line use comm."""
        make_process(tmp_path, 2, comm="kworker/0:1\n")

        (thread,) = ProcfsSource(proc_root=tmp_path).threads()

        assert thread.command == "kworker/0:1"

    def test_command_falls_back_to_stat_name(self, tmp_path):
        """Test the stat command name as the last resort."""
        make_process(tmp_path, 9, comm="", cmdline="")

        (thread,) = ProcfsSource(proc_root=tmp_path).threads()

        assert thread.command == "proc"

    def test_check_missing_procfs(self, tmp_path):
        """Test that a missing procfs is reported as unavailable."""
        with pytest.raises(SourceUnavailableError):
            ProcfsSource(proc_root=tmp_path / "nope").check()


class TestPsutilCounters:
    """Tests for network, disk and host counters read through psutil."""

    def test_interfaces(self, tmp_path, monkeypatch):
        """Test interface counters, operstate and VM annotation."""
        counters = {
            "tap101i0": SimpleNamespace(
                bytes_recv=1000,
                bytes_sent=2000,
                packets_recv=10,
                packets_sent=20,
                errin=1,
                errout=0,
            ),
        }
        monkeypatch.setattr(psutil, "net_io_counters", lambda pernic=False, nowrap=True: counters)
        monkeypatch.setattr(
            psutil,
            "process_iter",
            lambda attrs=None: [
                SimpleNamespace(info={"cmdline": ["/usr/bin/kvm", "-id", "101", "-name", "vm"]}),
                SimpleNamespace(info={"cmdline": ["-netdev", "tap,ifname=tap101i0"]}),
                SimpleNamespace(info={"cmdline": None}),
            ],
        )
        state_dir = tmp_path / "class" / "net" / "tap101i0"
        state_dir.mkdir(parents=True)
        (state_dir / "operstate").write_text("up\n")

        (iface,) = ProcfsSource(sys_root=tmp_path).interfaces()

        assert iface.name == "tap101i0"
        assert iface.operstate == "up"
        assert iface.rx_bytes == 1000
        assert iface.tx_packets == 20
        assert iface.rx_errors == 1
        # ifname= sits on a different process than -id, so nothing matches
        assert iface.vm_id is None

    def test_disks(self, tmp_path, monkeypatch):
        """Test disk counters, exclusion patterns and queue gauges."""

        def disk(**kwargs):
            values = dict(
                read_count=5,
                write_count=6,
                read_bytes=1024,
                write_bytes=2048,
                read_time=7,
                write_time=8,
                busy_time=90,
            )
            values.update(kwargs)
            return SimpleNamespace(**values)

        monkeypatch.setattr(
            psutil,
            "disk_io_counters",
            lambda perdisk=False, nowrap=True: {"sda": disk(), "loop0": disk(), "ram1": disk()},
        )
        block = tmp_path / "class" / "block" / "sda"
        block.mkdir(parents=True)
        (block / "inflight").write_text("       3        2\n")
        queue = tmp_path / "block" / "sda" / "queue"
        queue.mkdir(parents=True)
        (queue / "nr_requests").write_text("64\n")

        (sda,) = ProcfsSource(sys_root=tmp_path).disks()

        assert sda.name == "sda"
        assert sda.reads == 5
        assert sda.read_sectors == 2
        assert sda.write_sectors == 4
        assert sda.io_ticks == 90
        assert sda.inflight == 5
        assert sda.queue_depth == 64

    def test_disk_counter_reset_reads_zero(self, tmp_path, monkeypatch):
        """Test that a disk counter going backwards yields zero IOPS, not a wrapped sum."""
        readings = iter([5000, 10])
        kwargs_seen = []

        def disk_io_counters(**kwargs):
            kwargs_seen.append(kwargs)
            reads = next(readings)
            return {
                "sda": SimpleNamespace(
                    read_count=reads,
                    write_count=0,
                    read_bytes=reads * 4096,
                    write_bytes=0,
                    read_time=reads,
                    write_time=0,
                    busy_time=0,
                )
            }

        monkeypatch.setattr(psutil, "disk_io_counters", disk_io_counters)
        source = ProcfsSource(sys_root=tmp_path)
        previous = Snapshot.from_entities(source.disks(), 0.0)
        current = Snapshot.from_entities(source.disks(), 5.0)

        RateComputer().disks(previous, current, 5.0)

        (sda,) = current
        assert sda.reads == 10
        assert sda.read_iops == 0.0
        assert sda.read_mib == 0.0
        assert all(kw["nowrap"] is False for kw in kwargs_seen)

    def test_interfaces_read_raw_counters(self, tmp_path, monkeypatch):
        """Test that interface counters are read without psutil's wrap adjustment."""
        kwargs_seen = {}

        def net_io_counters(**kwargs):
            kwargs_seen.update(kwargs)
            return {}

        monkeypatch.setattr(psutil, "net_io_counters", net_io_counters)
        monkeypatch.setattr(psutil, "process_iter", lambda attrs=None: [])

        assert ProcfsSource(sys_root=tmp_path).interfaces() == []
        assert kwargs_seen == {"pernic": True, "nowrap": False}

    def test_global_cpu(self, monkeypatch):
        """Test the host-wide CPU time breakdown."""
        times = SimpleNamespace(
            user=10.0, nice=1.0, system=5.0, idle=80.0, iowait=2.0, irq=0.5, softirq=0.5, steal=1.0
        )
        monkeypatch.setattr(psutil, "cpu_times", lambda: times)

        cpu = ProcfsSource().global_cpu()

        assert cpu.user == 10.0
        assert cpu.total == 100.0

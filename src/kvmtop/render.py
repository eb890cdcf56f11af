"""Turns a frame plus session state into table rows and header text."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatch

from rich.text import Text

from kvmtop.loop import Frame
from kvmtop.models import CLOCK_TICKS, PAGE_SIZE, DiskSample, NetIfaceSample, ThreadSample
from kvmtop.rates import MIB
from kvmtop.session import InputMode, SessionState, View
from kvmtop.sorting import COLUMNS, column_for, sort_rows

# Thresholds for color coding
CPU_WARN = 80.0
CPU_CRIT = 95.0
WAIT_WARN = 500.0
WAIT_CRIT = 1000.0

HELP_TEXT = """\
  VIEW CONTROLS:
    c       - Switch to Process/CPU view (main dashboard)
    s       - Switch to Storage/Disk view
    n       - Switch to Network view
    t       - Toggle Tree mode (show threads in process view)
    h       - Show this help screen

  INTERACTIVE CONTROLS:
    f       - Freeze/Resume display updates
    l       - Set display limit (number of entries to show)
    r       - Set refresh interval in seconds
    /       - Enter filter mode (search by PID, name, user, VM)
    q       - Quit kvmtop

  SORTING (Process View):
    1 PID   2 CPU%   3 Read Logs (logical IOPS)   4 Write Logs
    5 IO Wait   6 Read MiB/s   7 Write MiB/s   8 State

  SORTING (Network View):
    1 RX Mbps   2 TX Mbps

  SORTING (Storage View):
    1 Read IOPS   2 Write IOPS   3 Read MiB/s   4 Write MiB/s
    5 Read Latency   6 Write Latency   7 Utilization

  Pressing the active sort key again reverses the order.

  COMMAND-LINE OPTIONS:
    -i, --interval <sec>   Set refresh interval (default: 5.0)
    -p, --pid <PID>        Monitor specific process ID(s)
    -c, --config <path>    Read settings from a TOML file
    -v, --version          Show version information
    -h, --help             Show help message

  Press any key to return..."""

_PROMPTS = {
    InputMode.FILTER: "FILTER",
    InputMode.LIMIT: "LIMIT",
    InputMode.REFRESH: "REFRESH(s)",
}


@dataclass(slots=True)
class Table:
    """Column labels and styled cells ready for display."""

    columns: list[Text]
    rows: list[tuple[Text, ...]] = field(default_factory=list)


def format_uptime(seconds: float) -> str:
    """Format an age in seconds like top does: ``HH:MM:SS`` or ``NdHHh``."""
    seconds = max(int(seconds), 0)
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days > 0:
        return f"{days}d{hours:02d}h"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def pages_to_mib(pages: int) -> float:
    return pages * PAGE_SIZE / MIB


def matches_filter(
    row: ThreadSample | NetIfaceSample | DiskSample, view: View, needle: str
) -> bool:
    """Case-insensitive substring match on the fields relevant to ``view``."""
    if not needle:
        return True
    needle = needle.lower()
    if view is View.PROCESS:
        fields = (row.command, str(row.tgid), row.user)
    elif view is View.NETWORK:
        vm_id = str(row.vm_id) if row.vm_id is not None else "-"
        fields = (row.name, row.operstate, vm_id, row.vm_name)
    else:
        fields = (row.name,)
    return any(needle in f.lower() for f in fields)


class Renderer:
    """Formats frames for the terminal."""

    def __init__(
        self,
        version: str = "",
        color: bool = True,
        hide_interfaces: Sequence[str] = ("lo", "fw*"),
        privileged: bool = True,
    ) -> None:
        self.version = version
        self.color = color
        self.hide_interfaces = tuple(hide_interfaces)
        self.privileged = privileged

    # -- row selection ---------------------------------------------------

    def visible_rows(self, frame: Frame, session: SessionState) -> list:
        """Sorted, filtered and limited rows of the active view."""
        view = session.view
        if view is View.PROCESS:
            rows = frame.processes
        elif view is View.NETWORK:
            rows = [
                i
                for i in frame.interfaces
                if not any(fnmatch(i.name, pattern) for pattern in self.hide_interfaces)
            ]
        else:
            rows = frame.disks

        sort = session.active_sort
        column = column_for(view, sort.column)
        if column is not None:
            rows = sort_rows(rows, column, sort.descending)
        needle = session.active_filter
        rows = [r for r in rows if matches_filter(r, view, needle)]
        return rows[: session.limit]

    # -- tables ----------------------------------------------------------

    def table(self, frame: Frame, session: SessionState) -> Table:
        rows = self.visible_rows(frame, session)
        if session.view is View.NETWORK:
            return self._network_table(rows, session)
        if session.view is View.STORAGE:
            return self._storage_table(rows, session)
        return self._process_table(rows, frame, session)

    def _label(self, view: View, digit: str, session: SessionState) -> Text:
        column = COLUMNS[view][digit]
        label = f"[{digit}] {column.label}"
        sort = session.sort[view]
        if sort.column == digit:
            label += "▼" if sort.descending else "▲"
            return Text(label, style="bold")
        return Text(label)

    def _styled(self, value: str, style: str = "") -> Text:
        return Text(value, style=style if self.color else "")

    def _cpu_style(self, cpu: float) -> str:
        if cpu >= CPU_CRIT:
            return "red"
        if cpu >= CPU_WARN:
            return "yellow"
        return "green"

    def _wait_style(self, wait_ms: float) -> str:
        if wait_ms >= WAIT_CRIT:
            return "red"
        if wait_ms >= WAIT_WARN:
            return "yellow"
        return ""

    def _state_style(self, state: str) -> str:
        return {"D": "red", "Z": "yellow"}.get(state, "")

    def _process_table(
        self, rows: list[ThreadSample], frame: Frame, session: SessionState
    ) -> Table:
        v = View.PROCESS
        columns = [
            self._label(v, "1", session),
            Text("User"),
            Text("Uptime"),
            Text("Res(MiB)"),
            Text("Shr(MiB)"),
            Text("Virt(MiB)"),
            self._label(v, "3", session),
            self._label(v, "4", session),
            self._label(v, "5", session),
            self._label(v, "6", session),
            self._label(v, "7", session),
            self._label(v, "2", session),
            self._label(v, "8", session),
            Text("COMMAND"),
        ]
        table = Table(columns)
        uptime = frame.host.uptime_seconds

        children: dict[int, list[ThreadSample]] = {}
        if session.tree:
            for t in frame.threads:
                if t.tid != t.tgid:
                    children.setdefault(t.tgid, []).append(t)

        for row in rows:
            age = format_uptime(uptime - row.start_time_ticks / CLOCK_TICKS)
            table.rows.append(
                self._process_cells(
                    str(row.tid),
                    row,
                    user=row.user[:10],
                    age=age,
                    memory=tuple(
                        f"{pages_to_mib(p):.0f}"
                        for p in (row.mem_res_pages, row.mem_shr_pages, row.mem_virt_pages)
                    ),
                )
            )
            for child in children.get(row.tgid, ()):
                table.rows.append(self._process_cells(f"  └─ {child.tid}", child))

        table.rows.append(self._totals(frame))
        return table

    def _process_cells(
        self,
        pid: str,
        row: ThreadSample,
        user: str = "",
        age: str = "",
        memory: tuple[str, str, str] = ("", "", ""),
    ) -> tuple[Text, ...]:
        return (
            Text(pid),
            Text(user),
            Text(age),
            *(Text(m) for m in memory),
            Text(f"{row.read_iops:.0f}"),
            Text(f"{row.write_iops:.0f}"),
            self._styled(f"{row.io_wait_ms:.2f}", self._wait_style(row.io_wait_ms)),
            Text(f"{row.read_mib:.2f}"),
            Text(f"{row.write_mib:.2f}"),
            self._styled(f"{row.cpu_percent:.2f}", self._cpu_style(row.cpu_percent)),
            self._styled(row.state, self._state_style(row.state)),
            Text(row.command),
        )

    def _totals(self, frame: Frame) -> tuple[Text, ...]:
        rows = frame.processes
        res = sum(pages_to_mib(r.mem_res_pages) for r in rows)
        shr = sum(pages_to_mib(r.mem_shr_pages) for r in rows)
        virt = sum(pages_to_mib(r.mem_virt_pages) for r in rows)
        threads = frame.threads
        return tuple(
            Text(cell, style="bold")
            for cell in (
                "TOTAL",
                "",
                "",
                f"{res:.0f}",
                f"{shr:.0f}",
                f"{virt:.0f}",
                f"{sum(t.read_iops for t in threads):.0f}",
                f"{sum(t.write_iops for t in threads):.0f}",
                f"{sum(t.io_wait_ms for t in threads):.2f}",
                f"{sum(t.read_mib for t in threads):.2f}",
                f"{sum(t.write_mib for t in threads):.2f}",
                f"{sum(t.cpu_percent for t in threads):.2f}",
                "",
                "",
            )
        )

    def _network_table(self, rows: list[NetIfaceSample], session: SessionState) -> Table:
        v = View.NETWORK
        columns = [
            Text("IFACE"),
            Text("STATE"),
            self._label(v, "1", session),
            self._label(v, "2", session),
            Text("RX_Pkts"),
            Text("TX_Pkts"),
            Text("RX_Err"),
            Text("TX_Err"),
            Text("VMID"),
            Text("VM_NAME"),
        ]
        table = Table(columns)
        for n in rows:
            table.rows.append(
                (
                    Text(n.name),
                    Text(n.operstate),
                    Text(f"{n.rx_mbps:.2f}"),
                    Text(f"{n.tx_mbps:.2f}"),
                    Text(f"{n.rx_pps:.0f}"),
                    Text(f"{n.tx_pps:.0f}"),
                    self._styled(f"{n.rx_errs_ps:.0f}", "red" if n.rx_errs_ps else ""),
                    self._styled(f"{n.tx_errs_ps:.0f}", "red" if n.tx_errs_ps else ""),
                    Text(str(n.vm_id) if n.vm_id is not None else "-"),
                    Text(n.vm_name),
                )
            )
        return table

    def _storage_table(self, rows: list[DiskSample], session: SessionState) -> Table:
        v = View.STORAGE
        columns = [Text("DEVICE")]
        columns += [self._label(v, digit, session) for digit in COLUMNS[v]]
        columns += [Text("InFlight"), Text("QDepth")]
        table = Table(columns)
        for d in rows:
            table.rows.append(
                (
                    Text(d.name),
                    Text(f"{d.read_iops:.2f}"),
                    Text(f"{d.write_iops:.2f}"),
                    Text(f"{d.read_mib:.2f}"),
                    Text(f"{d.write_mib:.2f}"),
                    Text(f"{d.read_latency_ms:.4f}"),
                    Text(f"{d.write_latency_ms:.4f}"),
                    self._styled(f"{d.util_percent:.1f}", self._cpu_style(d.util_percent)),
                    Text(str(d.inflight)),
                    Text(str(d.queue_depth)),
                )
            )
        return table

    # -- header ----------------------------------------------------------

    def status_line(self, session: SessionState) -> str:
        """Mode prompt while typing, otherwise the key summary."""
        prompt = _PROMPTS.get(session.mode)
        if prompt is not None:
            return f"{prompt}: {session.buffer}_"
        filter_info = f"Filter: {session.filter_text} | " if session.filter_text else ""
        return (
            f"{filter_info}[r] Refresh={session.interval:.1f}s | [c] CPU | [s] Storage | "
            f"[n] Net | [t] Tree | [l] Limit({session.limit}) | "
            f"[f] Freeze: {'ON' if session.frozen else 'OFF'} | [/] Filter | [h] Help | [q] Quit"
        )

    def summary_line(self, frame: Frame) -> str:
        """Host-wide CPU, RAM and swap usage."""
        host = frame.host
        ram_total = host.memory_total // (1024 * 1024)
        ram_used = host.memory_used // (1024 * 1024)
        swap_total = host.swap_total // (1024 * 1024)
        swap_used = host.swap_used // (1024 * 1024)
        ram_pct = ram_used / ram_total * 100.0 if ram_total else 0.0
        swap_pct = swap_used / swap_total * 100.0 if swap_total else 0.0
        line = (
            f"CPU: {frame.cpu_percent:5.2f}% ({host.cpu_count} Threads) | "
            f"RAM: {ram_used:,} / {ram_total:,} MiB ({ram_pct:.1f}%) | "
            f"SWAP: {swap_used:,} / {swap_total:,} MiB ({swap_pct:.1f}%)"
        )
        if not self.privileged:
            line += " | not root: I/O of other users unavailable"
        return line

    def header(self, frame: Frame, session: SessionState) -> Text:
        text = Text()
        text.append(f"kvmtop {self.version}", style="bold")
        text.append("  ")
        text.append(self.status_line(session))
        text.append("\n")
        text.append(self.summary_line(frame))
        return text

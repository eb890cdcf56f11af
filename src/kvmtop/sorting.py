"""Per-view sort columns and ordering."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from operator import attrgetter
from typing import Any, TypeVar

from kvmtop.session import SortState, View

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class SortColumn:
    """A column selectable with a digit key."""

    digit: str
    label: str
    key: Callable[[Any], Any]


def _columns(*columns: SortColumn) -> dict[str, SortColumn]:
    return {c.digit: c for c in columns}


COLUMNS: dict[View, dict[str, SortColumn]] = {
    View.PROCESS: _columns(
        SortColumn("1", "PID", attrgetter("tid")),
        SortColumn("2", "CPU%", attrgetter("cpu_percent")),
        SortColumn("3", "R_Log", attrgetter("read_iops")),
        SortColumn("4", "W_Log", attrgetter("write_iops")),
        SortColumn("5", "Wait", attrgetter("io_wait_ms")),
        SortColumn("6", "R_MiB", attrgetter("read_mib")),
        SortColumn("7", "W_MiB", attrgetter("write_mib")),
        SortColumn("8", "S", attrgetter("state")),
    ),
    View.NETWORK: _columns(
        SortColumn("1", "RX_Mbps", attrgetter("rx_mbps")),
        SortColumn("2", "TX_Mbps", attrgetter("tx_mbps")),
    ),
    View.STORAGE: _columns(
        SortColumn("1", "R_IOPS", attrgetter("read_iops")),
        SortColumn("2", "W_IOPS", attrgetter("write_iops")),
        SortColumn("3", "R_MiB/s", attrgetter("read_mib")),
        SortColumn("4", "W_MiB/s", attrgetter("write_mib")),
        SortColumn("5", "R_Lat(ms)", attrgetter("read_latency_ms")),
        SortColumn("6", "W_Lat(ms)", attrgetter("write_latency_ms")),
        SortColumn("7", "Util%", attrgetter("util_percent")),
    ),
}


def column_for(view: View, digit: str) -> SortColumn | None:
    """Return the sort column bound to ``digit`` in ``view``, if any."""
    return COLUMNS[view].get(digit)


def toggle_sort(state: SortState, digit: str) -> SortState:
    """Select a column: the active one flips direction, another starts descending."""
    if state.column == digit:
        return SortState(digit, not state.descending)
    return SortState(digit, True)


def sort_rows(rows: Iterable[T], column: SortColumn, descending: bool) -> list[T]:
    """Stable sort; rows with equal keys keep their incoming order."""
    return sorted(rows, key=column.key, reverse=descending)

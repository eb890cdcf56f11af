"""Collapse thread rows into one row per process."""

from collections.abc import Iterable
from dataclasses import replace
from itertools import groupby
from operator import attrgetter

from kvmtop.models import ThreadSample

RATE_FIELDS = (
    "cpu_percent",
    "read_iops",
    "write_iops",
    "io_wait_ms",
    "read_mib",
    "write_mib",
    "minflt_ps",
    "majflt_ps",
)


def aggregate_processes(threads: Iterable[ThreadSample]) -> list[ThreadSample]:
    """
    Merge threads sharing a TGID into a single process row.

    Rate fields are summed over the run. The row is identified by the TGID;
    its state, command and memory gauges come from the primary thread
    (``tid == tgid``) or, when that thread is missing, the last one merged.
    The input rows are not modified.
    """
    rows = []
    for tgid, group in groupby(sorted(threads, key=attrgetter("tgid")), key=attrgetter("tgid")):
        members = list(group)
        primary = next((t for t in members if t.tid == tgid), members[-1])
        sums = {field: sum(getattr(t, field) for t in members) for field in RATE_FIELDS}
        rows.append(replace(primary, tid=tgid, thread_count=len(members), **sums))
    return rows

"""Interactive session state shared by the input controller, sorter and renderer."""

from dataclasses import dataclass, field
from enum import Enum

MIN_INTERVAL = 0.1


class View(Enum):
    """Resource view shown in the table."""

    PROCESS = "process"
    NETWORK = "network"
    STORAGE = "storage"


class InputMode(Enum):
    """Modal keyboard state."""

    NORMAL = "normal"
    FILTER = "filter"
    LIMIT = "limit"
    REFRESH = "refresh"
    HELP = "help"


@dataclass(slots=True, frozen=True)
class SortState:
    """Active sort column (by its digit key) and direction."""

    column: str
    descending: bool = True


def _default_sorts() -> dict[View, SortState]:
    return {
        View.PROCESS: SortState("2"),  # CPU%
        View.NETWORK: SortState("2"),  # TX
        View.STORAGE: SortState("1"),  # R_IOPS
    }


@dataclass(slots=True)
class SessionState:
    """
    All user-adjustable state of one kvmtop run.

    Only the input controller writes to it; the main loop, sorter and
    renderer read it.
    """

    view: View = View.PROCESS
    sort: dict[View, SortState] = field(default_factory=_default_sorts)
    limit: int = 50
    interval: float = 5.0
    filter_text: str = ""
    frozen: bool = False
    tree: bool = False
    mode: InputMode = InputMode.NORMAL
    buffer: str = ""
    quit: bool = False

    @property
    def active_sort(self) -> SortState:
        return self.sort[self.view]

    @property
    def active_filter(self) -> str:
        """Filter applied to rows; previewed live while it is being typed."""
        if self.mode is InputMode.FILTER:
            return self.buffer
        return self.filter_text

"""kvmtop - Main Textual application."""

import asyncio

import structlog
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Static

from kvmtop.__about__ import __version__
from kvmtop.config import Config
from kvmtop.input import BACKSPACE, ENTER, ESCAPE
from kvmtop.loop import Frame, MainLoop
from kvmtop.render import HELP_TEXT, Renderer, Table
from kvmtop.session import InputMode, SessionState, View
from kvmtop.snapshot import SnapshotStore
from kvmtop.source import CounterSource

log = structlog.get_logger()

# Process exit code when the sample collections cannot be allocated
EXIT_OUT_OF_MEMORY = 3

_NAMED_KEYS = {
    "escape": ESCAPE,
    "enter": ENTER[0],
    "backspace": BACKSPACE[0],
    "ctrl+h": BACKSPACE[1],
}


def translate_key(event: events.Key) -> str | None:
    """Map a Textual key event to the single character the controller expects."""
    if event.key in _NAMED_KEYS:
        return _NAMED_KEYS[event.key]
    if event.character and len(event.character) == 1 and event.character.isprintable():
        return event.character
    return None


class KeyQueue:
    """Keystrokes from the UI, read one at a time with a timeout."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue()

    def put(self, key: str) -> None:
        self._queue.put_nowait(key)

    async def read_key(self, timeout: float | None) -> str | None:
        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class HeaderStats(Static):
    """Header widget showing the key summary and host-wide usage."""

    DEFAULT_CSS = """
    HeaderStats {
        height: 2;
        padding: 0 1;
        background: $surface;
    }
    """


class ResourceTable(Container):
    """Container for the data table of the active view."""

    DEFAULT_CSS = """
    ResourceTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ResourceTable."""
        super().__init__(*args, **kwargs)
        self._columns: list[str] = []

    def compose(self) -> ComposeResult:
        """Compose the resource table."""
        yield DataTable(id="resource-table", cursor_type="none", show_cursor=False)

    def on_mount(self) -> None:
        """Keep keystrokes away from the table's own bindings."""
        table = self.query_one("#resource-table", DataTable)
        table.can_focus = False

    def update_table(self, data: Table) -> None:
        """
        Replace the table contents.

        Columns are rebuilt only when their labels change (view switch or
        new sort column).
        """
        table = self.query_one("#resource-table", DataTable)
        labels = [c.plain for c in data.columns]
        if labels != self._columns:
            table.clear(columns=True)
            table.add_columns(*data.columns)
            self._columns = labels
        else:
            table.clear()
        table.add_rows(data.rows)


class KvmtopApp(App):
    """Main kvmtop application."""

    TITLE = "kvmtop"
    SUB_TITLE = "KVM host monitor"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    Screen {
        layout: vertical;
    }

    #help {
        height: 1fr;
        padding: 1 2;
    }
    """

    def __init__(
        self,
        source: CounterSource,
        config: Config | None = None,
        interval: float | None = None,
        privileged: bool = True,
    ) -> None:
        """
        Initialize the KvmtopApp.

        Args:
            source: Counter source sampled every cycle.
            config: Loaded configuration (defaults when None).
            interval: Refresh interval overriding the configured one.
            privileged: Whether kvmtop runs as root.
        """
        super().__init__()
        config = config or Config()
        self.session = SessionState(
            view=config.initial_view,
            limit=config.display.limit,
            interval=interval if interval is not None else config.display.interval,
        )
        self.renderer = Renderer(
            version=__version__,
            color=config.display.color,
            hide_interfaces=config.network.hide,
            privileged=privileged,
        )
        self._keys = KeyQueue()
        self.main_loop = MainLoop(SnapshotStore(source), self.session, self._keys, self.show_frame)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ResourceTable()
        yield Static(Text(HELP_TEXT), id="help")

    def on_mount(self) -> None:
        """Start the main loop on the app's event loop."""
        self.query_one("#help", Static).display = False
        self.run_worker(self._drive(), name="main-loop", exclusive=True)

    async def _drive(self) -> None:
        try:
            await self.main_loop.run()
        except MemoryError:
            log.critical("out_of_memory")
            self.exit(return_code=EXIT_OUT_OF_MEMORY, message="kvmtop: out of memory")
            return
        self.exit()

    def on_key(self, event: events.Key) -> None:
        """Hand every keystroke to the main loop."""
        key = translate_key(event)
        if key is None:
            return
        event.stop()
        event.prevent_default()
        self._keys.put(key)

    def show_frame(self, frame: Frame, session: SessionState) -> None:
        """Render one frame; called by the main loop whenever the view is dirty."""
        self.query_one("#header-stats", HeaderStats).update(self.renderer.header(frame, session))

        showing_help = session.mode is InputMode.HELP
        help_text = self.query_one("#help", Static)
        resources = self.query_one(ResourceTable)
        help_text.display = showing_help
        resources.display = not showing_help
        if showing_help:
            return

        resources.update_table(self.renderer.table(frame, session))
        resources.border_title = {
            View.PROCESS: "Processes",
            View.NETWORK: "Network",
            View.STORAGE: "Storage",
        }[session.view]

"""Modal keyboard handling."""

import structlog

from kvmtop.session import MIN_INTERVAL, InputMode, SessionState, View
from kvmtop.sorting import column_for, toggle_sort

log = structlog.get_logger()

ESCAPE = "\x1b"
ENTER = ("\r", "\n")
BACKSPACE = ("\x7f", "\x08")

BUFFER_CAPACITY = {
    InputMode.FILTER: 63,
    InputMode.LIMIT: 15,
    InputMode.REFRESH: 15,
}

_VIEW_KEYS = {"c": View.PROCESS, "n": View.NETWORK, "s": View.STORAGE}
_ENTRY_KEYS = {"/": InputMode.FILTER, "l": InputMode.LIMIT, "r": InputMode.REFRESH}


class InputController:
    """
    Interprets single keystrokes and mutates the session.

    ``handle()`` returns True whenever the visible state changed and the
    frame has to be redrawn.
    """

    def __init__(self, session: SessionState) -> None:
        self.session = session

    def handle(self, key: str) -> bool:
        """Apply one keystroke in the current mode and report whether to redraw."""
        mode = self.session.mode
        if mode is InputMode.NORMAL:
            return self._normal(key)
        if mode is InputMode.HELP:
            self.session.mode = InputMode.NORMAL
            return True
        return self._entry(key)

    def _normal(self, key: str) -> bool:
        s = self.session
        cmd = key.lower()

        if cmd in _ENTRY_KEYS:
            s.mode = _ENTRY_KEYS[cmd]
            s.buffer = ""
        elif cmd == "q":
            s.quit = True
        elif cmd == "h":
            s.mode = InputMode.HELP
        elif cmd == "f":
            s.frozen = not s.frozen
            log.info("session_changed", frozen=s.frozen)
        elif cmd == "t":
            s.tree = not s.tree
            s.view = View.PROCESS
        elif cmd in _VIEW_KEYS:
            s.view = _VIEW_KEYS[cmd]
        elif column_for(s.view, key) is not None:
            s.sort[s.view] = toggle_sort(s.active_sort, key)
        else:
            return False
        return True

    def _entry(self, key: str) -> bool:
        s = self.session
        if key == ESCAPE:
            if s.mode is InputMode.FILTER:
                s.filter_text = ""
            s.buffer = ""
            s.mode = InputMode.NORMAL
        elif key in BACKSPACE:
            s.buffer = s.buffer[:-1]
        elif key in ENTER:
            self._commit()
            s.buffer = ""
            s.mode = InputMode.NORMAL
        elif self._accepts(key):
            if len(s.buffer) < BUFFER_CAPACITY[s.mode]:
                s.buffer += key
        else:
            return False
        return True

    def _accepts(self, key: str) -> bool:
        if len(key) != 1:
            return False
        mode = self.session.mode
        if mode is InputMode.LIMIT:
            return key.isdigit()
        if mode is InputMode.REFRESH:
            return key.isdigit() or key == "."
        return key.isprintable()

    def _commit(self) -> None:
        s = self.session
        if s.mode is InputMode.FILTER:
            s.filter_text = s.buffer
        elif s.mode is InputMode.LIMIT:
            try:
                value = int(s.buffer)
            except ValueError:
                return
            if value > 0:
                s.limit = value
        elif s.mode is InputMode.REFRESH:
            try:
                interval = float(s.buffer)
            except ValueError:
                return
            if interval >= MIN_INTERVAL:
                s.interval = interval
                log.info("session_changed", interval=interval)

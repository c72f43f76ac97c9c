import threading

import pytest

from ttybar import AnsiTerminalDriver


class RecordingStream:
    """Output stream recording every write call separately"""

    def __init__(self, tty=False, encoding='utf-8'):
        self.tty = tty
        self.encoding = encoding
        self.writes = []
        self.fail_writes = False
        self._lock = threading.Lock()

    def write(self, data):
        if self.fail_writes:
            raise OSError('destination closed')
        with self._lock:
            self.writes.append(data)
        return len(data)

    def flush(self):
        pass

    def isatty(self):
        return self.tty

    def getvalue(self):
        return ''.join(self.writes)


class FixedWidthDriver(AnsiTerminalDriver):
    """ANSI driver with a fixed terminal width"""

    def __init__(self, width=60, interactive=True):
        self.width = width
        self.interactive = interactive

    def is_interactive(self, stream):
        return self.interactive

    def terminal_width(self, stream):
        return self.width


@pytest.fixture
def log_stream():
    return RecordingStream()


@pytest.fixture
def tty_stream():
    return RecordingStream(tty=True)


@pytest.fixture
def make_driver():
    return FixedWidthDriver

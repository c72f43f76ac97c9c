# -*- coding: utf-8 -*-
"""
ttybar – A live progress bar and spinner for terminals and captured streams.
Copyright (c) 2025 Igor Iatsenko
Licensed under the MIT License.
"""

import io
import os
import sys
import math
import shutil
import time
import threading
from abc import ABC, abstractmethod
from typing import (
        Optional,
        Tuple,
        List,
        Sequence,
        Iterable,
        Iterator,
        TextIO,
        Any,
)
import logging

__all__ = [
    'progress',
    'ProgressBar',
    'ProgressStateError',
    'TerminalDriver',
    'AnsiTerminalDriver',
    'WindowsTerminalDriver',
    'default_driver',
    'render_bar',
    'render_spinner',
    'format_speed',
    'truncate_status',
    'compute_percentage',
    'compute_speed',
    'SPINNER_FRAMES_UNICODE',
    'SPINNER_FRAMES_ASCII',
]

logger = logging.getLogger('ttybar')


_DEFAULT_TERMINAL_WIDTH = 80
_DEFAULT_TERMINAL_HEIGHT = 24
_DEFAULT_PADDING_RIGHT = 20
_MAX_REDRAW_ERRORS = 10
_MIN_ELAPSED_SECONDS = 1e-6


class ProgressStateError(RuntimeError):
    """Raised when a progress bar is driven out of lifecycle order"""


# ============================================================================
# Terminal utilities
# ============================================================================

class TerminalDriver(ABC):
    """
    Terminal control primitives consumed by the progress bar.

    Cursor operations write their control sequences to the stream they are
    given. The progress bar passes an in-memory frame buffer, so a whole
    redraw reaches the real destination in one write.
    """

    @abstractmethod
    def is_interactive(self, stream: TextIO) -> bool:
        """Whether the stream is a terminal that supports cursor control"""
        pass

    @abstractmethod
    def hide_cursor(self, stream: TextIO):
        pass

    @abstractmethod
    def show_cursor(self, stream: TextIO):
        pass

    @abstractmethod
    def move_cursor_up(self, stream: TextIO, lines: int):
        """Move the cursor up, doing nothing for ``lines <= 0``"""
        pass

    @abstractmethod
    def move_cursor_down(self, stream: TextIO, lines: int):
        """Move the cursor down, doing nothing for ``lines <= 0``"""
        pass

    @abstractmethod
    def terminal_width(self, stream: TextIO) -> int:
        """Current terminal width in columns, never failing"""
        pass


class AnsiTerminalDriver(TerminalDriver):
    """Driver for terminals that understand ANSI/VT100 escape sequences"""

    HIDE_CURSOR = '\033[?25l'
    SHOW_CURSOR = '\033[?25h'

    def is_interactive(self, stream: TextIO) -> bool:
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError, OSError):
            # No isatty() at all, or the stream is already closed
            logger.debug('isatty() probe failed for %r', stream, exc_info=True)
            return False

        if os.environ.get('TERM', '') == 'dumb':
            return False

        return True

    def hide_cursor(self, stream: TextIO):
        stream.write(self.HIDE_CURSOR)

    def show_cursor(self, stream: TextIO):
        stream.write(self.SHOW_CURSOR)

    def move_cursor_up(self, stream: TextIO, lines: int):
        if lines > 0:
            stream.write(f'\033[{lines}A')

    def move_cursor_down(self, stream: TextIO, lines: int):
        if lines > 0:
            stream.write(f'\033[{lines}B')

    def terminal_width(self, stream: TextIO) -> int:
        return _get_terminal_size(stream)[0]


class WindowsTerminalDriver(AnsiTerminalDriver):
    """ANSI driver for Windows consoles, switching on virtual terminal processing"""

    ENABLE_VIRTUAL_TERMINAL_PROCESSING = 0x0004

    def is_interactive(self, stream: TextIO) -> bool:
        if not super().is_interactive(stream):
            return False

        try:
            return self._enable_virtual_terminal(stream)
        except Exception:
            logger.debug('Enabling virtual terminal processing failed', exc_info=True)
            return False

    def _enable_virtual_terminal(self, stream: TextIO) -> bool:
        import ctypes
        import msvcrt

        kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        handle = msvcrt.get_osfhandle(stream.fileno())  # type: ignore[attr-defined]

        mode = ctypes.c_uint32()
        if not kernel32.GetConsoleMode(handle, ctypes.byref(mode)):
            return False

        if mode.value & self.ENABLE_VIRTUAL_TERMINAL_PROCESSING:
            return True

        return bool(kernel32.SetConsoleMode(handle, mode.value | self.ENABLE_VIRTUAL_TERMINAL_PROCESSING))


def default_driver() -> TerminalDriver:
    """Pick the terminal driver for the running platform"""
    if os.name == 'nt':
        return WindowsTerminalDriver()
    return AnsiTerminalDriver()


def _get_terminal_size(stream: Optional[TextIO] = None) -> Tuple[int, int]:
    """Return the (columns, lines) of the terminal, with a safe fallback."""
    default = (_DEFAULT_TERMINAL_WIDTH, _DEFAULT_TERMINAL_HEIGHT)

    if stream is not None:
        try:
            size = os.get_terminal_size(stream.fileno())
            if size.columns > 0:
                return size.columns, size.lines
        except (AttributeError, ValueError, OSError):
            # In-memory streams, pipes and closed files have no size
            pass

    try:
        # shutil honours COLUMNS/LINES and takes an explicit fallback
        size = shutil.get_terminal_size(fallback=default)
        if size.columns > 0:
            return size.columns, size.lines
    except Exception:
        logger.debug('Terminal size query failed', exc_info=True)

    return default


def _detect_unicode_support(stream: TextIO) -> bool:
    """Whether the braille spinner frames can be written to the stream"""
    if os.environ.get('TERM', '') == 'dumb':
        return False

    encoding = getattr(stream, 'encoding', None)
    if not encoding:
        return False

    try:
        ''.join(SPINNER_FRAMES_UNICODE).encode(encoding)
    except (UnicodeEncodeError, LookupError):
        return False

    return True


# ============================================================================
# Rendering
# ============================================================================

SPINNER_FRAMES_UNICODE = ['⠋', '⠙', '⠚', '⠒', '⠂', '⠂', '⠒', '⠲', '⠴', '⠦', '⠖', '⠒', '⠐', '⠐', '⠒', '⠓', '⠋']
SPINNER_FRAMES_ASCII = ['\\', '|', '/', '-']

CHAR_COMPLETE = '='
CHAR_EDGE = '>'
CHAR_INCOMPLETE = ' '
ELLIPSIS = '...'


def compute_percentage(current: int, maximum: int) -> int:
    """Rounded percentage of ``current`` against ``maximum``, clamped to [0, 100]"""
    if maximum <= 0:
        return 0
    percentage = round(current * 100 / maximum)
    return min(100, max(0, percentage))


def compute_speed(current: int, elapsed: float) -> float:
    """Items per second, zero while elapsed time is too small to divide by"""
    if not math.isfinite(elapsed) or elapsed < _MIN_ELAPSED_SECONDS:
        return 0.0
    return current / elapsed


def render_bar(percentage: int, width: int) -> str:
    """
    Render the bar body, exactly ``width`` columns wide.

    The filled part is drawn with ``=`` and a ``>`` leading edge; a complete
    bar has no edge marker. Widths below one are rendered one column wide.
    """
    width = max(1, int(width))
    percentage = min(100, max(0, int(percentage)))

    if percentage == 100:
        return CHAR_COMPLETE * width

    filled_width = percentage * width // 100
    bar = CHAR_COMPLETE * (filled_width - 1) + CHAR_EDGE
    return bar + CHAR_INCOMPLETE * (width - len(bar))


def render_spinner(phase: int, frames: Sequence[str] = SPINNER_FRAMES_UNICODE) -> str:
    """Spinner glyph for the given animation phase"""
    return frames[phase % len(frames)]


def format_speed(value: float) -> str:
    """One decimal place below 100 it/s, whole numbers from 100 up"""
    if not math.isfinite(value) or value < 0:
        value = 0.0

    if value < 100:
        return f'{value:.1f}'
    return f'{value:.0f}'


def truncate_status(text: str, max_width: int) -> str:
    """Cut the text at a word boundary so that it fits ``max_width`` with an ellipsis"""
    if not text:
        return text

    # Too narrow for anything but the ellipsis
    if max_width <= len(ELLIPSIS):
        return ELLIPSIS

    if len(text) <= max_width:
        return text

    trim_width = max_width - len(ELLIPSIS)
    words: List[str] = []
    used = 0

    for word in text.split():
        needed = len(word) + (1 if words else 0)
        if used + needed > trim_width:
            break
        words.append(word)
        used += needed

    return ' '.join(words) + ELLIPSIS


def _format_bar_line(percentage: int, bar_width: int, speed: str) -> str:
    return f'[{render_bar(percentage, bar_width)}] {percentage:3d}% ({speed} it/s)'


def _format_spinner_line(glyph: str, speed: str) -> str:
    return f'{glyph} ({speed} it/s)'


def _format_log_line(percentage: Optional[int], speed: str) -> str:
    prefix = f'{percentage:3d}% ' if percentage is not None else ''
    return f'{prefix}({speed} it/s)'


def _normalize_status(text: Optional[str]) -> str:
    """Collapse the status into a single line"""
    if text is None:
        return ''
    return ' '.join(text.strip().splitlines())


# ============================================================================
# Progress Bar
# ============================================================================

class ProgressBar:
    """Bounded progress bar, or spinner when no maximum is known"""

    def __init__(self,
                 maximum: Optional[int] = 0,
                 redraw_interval: float = 0.5,
                 *,
                 stream: Optional[TextIO] = None,
                 driver: Optional[TerminalDriver] = None,
                 use_unicode: Optional[bool] = None,
                 terminal_padding_right: int = _DEFAULT_PADDING_RIGHT):
        """
        Create a progress bar.

        Args:
            maximum: Value representing 100% (0 or None for an unbounded spinner)
            redraw_interval: Seconds between background redraws
            stream: Output destination (default sys.stderr)
            driver: Terminal driver (default picked for the platform)
            use_unicode: Use the braille spinner (auto-detected if None)
            terminal_padding_right: Columns reserved for the percentage and speed
        """
        if maximum is None:
            maximum = 0

        # Validation
        if maximum < 0:
            raise ValueError("maximum must be non-negative")
        if redraw_interval <= 0:
            raise ValueError("redraw_interval must be positive")
        if terminal_padding_right < 0:
            raise ValueError("terminal_padding_right must be non-negative")

        self._maximum = int(maximum)
        self.redraw_interval = float(redraw_interval)
        self.terminal_padding_right = terminal_padding_right
        self.stream: TextIO = stream if stream is not None else sys.stderr
        self.driver: TerminalDriver = driver if driver is not None else default_driver()

        if use_unicode is None:
            use_unicode = _detect_unicode_support(self.stream)
        self.frames = SPINNER_FRAMES_UNICODE if use_unicode else SPINNER_FRAMES_ASCII

        # Classified once, never re-probed
        self._is_interactive = self._probe_interactive()

        self._current = 0
        self._counter_lock = threading.Lock()

        self._lock = threading.Lock()
        self._started_at = time.monotonic()
        self._status = ''
        self._status_changed = False
        self._running = False
        self._completed = False
        self._spinner_phase = 0
        self._lines_reserved = 0

        self._stop_event = threading.Event()
        self._redraw_thread: Optional[threading.Thread] = None

    def __enter__(self):
        """Start drawing on entering the context"""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Complete on leaving the context, or stop where it is on an exception"""
        if self._running:
            if exc_type is None:
                self.complete()
            else:
                self.stop()
        return False

    def _probe_interactive(self) -> bool:
        try:
            return bool(self.driver.is_interactive(self.stream))
        except Exception:
            logger.debug('Terminal capability probe failed, using line output', exc_info=True)
            return False

    @property
    def maximum(self) -> int:
        return self._maximum

    @property
    def bounded(self) -> bool:
        return self._maximum > 0

    @property
    def current(self) -> int:
        with self._counter_lock:
            return self._current

    @property
    def status(self) -> str:
        return self._status

    @property
    def running(self) -> bool:
        return self._running

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def interactive(self) -> bool:
        return self._is_interactive

    def elapsed(self) -> float:
        """Seconds since the bar was created"""
        return time.monotonic() - self._started_at

    def speed(self) -> float:
        """Average items per second since the bar was created"""
        return compute_speed(self.current, self.elapsed())

    def _check_not_completed(self):
        if self._completed:
            raise ProgressStateError("progress bar has already completed")

    def increment(self, step: int = 1):
        """Increment progress by step"""
        if step <= 0:
            raise ValueError("step must be positive")
        self._check_not_completed()

        with self._counter_lock:
            self._current += step

    def set_value(self, value: int):
        """Set the current progress value"""
        if value < 0:
            raise ValueError("value must be non-negative")
        self._check_not_completed()

        with self._counter_lock:
            self._current = int(value)

    def set_status(self, text: Optional[str]):
        """Set the single-line status shown above the bar, redrawing at once if running"""
        self._check_not_completed()
        status = _normalize_status(text)

        with self._lock:
            self._status = status
            self._status_changed = True
            if self._running:
                self._redraw_internal()

    def start(self):
        """Reserve screen space, hide the cursor and start the redraw thread"""
        with self._lock:
            self._check_not_completed()
            if self._running:
                raise ProgressStateError("progress bar is already running")

            if self._is_interactive:
                lines = self._frame_line_count()
                frame = io.StringIO()
                self.driver.hide_cursor(frame)
                frame.write('\n' * lines)
                self._write_frame(frame)
                self._lines_reserved = lines

            self._running = True
            self._stop_event.clear()
            self._redraw_thread = threading.Thread(target=self._redraw_loop,
                                                   name='ttybar-redraw',
                                                   daemon=True)
            self._redraw_thread.start()

    def complete(self):
        """Draw the final frame at 100%, stop the redraw thread and restore the cursor"""
        self._finish(fill=True)

    def stop(self):
        """Like complete(), but the final frame shows the current value as is"""
        self._finish(fill=False)

    def _finish(self, fill: bool):
        with self._lock:
            self._check_not_completed()
            if not self._running:
                raise ProgressStateError("progress bar is not running")
            self._running = False
            self._completed = True

        if fill and self._maximum > 0:
            with self._counter_lock:
                self._current = self._maximum

        self._stop_event.set()
        thread = self._redraw_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._redraw_thread = None

        with self._lock:
            try:
                self._redraw_internal()
            finally:
                if self._is_interactive:
                    frame = io.StringIO()
                    self.driver.show_cursor(frame)
                    frame.write('\n')
                    self._write_frame(frame)

    def _redraw_loop(self):
        """Redraw on every interval until stopped"""
        error_count = 0

        while not self._stop_event.wait(self.redraw_interval):
            try:
                self._tick()
                error_count = 0
            except Exception:
                error_count += 1
                if error_count <= _MAX_REDRAW_ERRORS:
                    logger.exception('Progress redraw failed (error %d/%d)', error_count, _MAX_REDRAW_ERRORS)
                elif error_count == _MAX_REDRAW_ERRORS + 1:
                    logger.error('Progress redraw: suppressing further errors')

    def _tick(self):
        with self._lock:
            # complete() owns the final frame
            if not self._running:
                return
            self._redraw_internal()

    def _frame_line_count(self) -> int:
        return 2 if self._status else 1

    def _redraw_internal(self):
        """Render one frame; the caller holds the lock"""
        current = self.current
        speed = format_speed(compute_speed(current, self.elapsed()))
        percentage = compute_percentage(current, self._maximum) if self._maximum > 0 else None

        frame = io.StringIO()
        if self._is_interactive:
            lines_reserved = self._render_terminal(frame, percentage, speed)
        else:
            lines_reserved = self._render_lines(frame, percentage, speed)

        self._write_frame(frame)

        self._status_changed = False
        self._lines_reserved = lines_reserved
        if self._maximum == 0:
            self._spinner_phase = (self._spinner_phase + 1) % len(self.frames)

    def _render_terminal(self, frame: TextIO, percentage: Optional[int], speed: str) -> int:
        """Overwrite the previous frame in place, returning the lines now occupied"""
        width = self._terminal_width()
        # Never write into the last column, the terminal would wrap
        line_width = max(1, width - 1)
        blank = '\r' + ' ' * line_width + '\r'

        self.driver.move_cursor_up(frame, self._lines_reserved)

        if self._status_changed:
            frame.write(blank)

        lines = []
        if self._status:
            lines.append(truncate_status(self._status, line_width))

        if percentage is not None:
            # The bar gives way so the percentage and speed stay whole
            suffix_width = len(_format_bar_line(percentage, 1, speed)) - 1
            bar_width = min(width - self.terminal_padding_right, line_width - suffix_width)
            lines.append(_format_bar_line(percentage, max(1, bar_width), speed))
        else:
            glyph = render_spinner(self._spinner_phase, self.frames)
            lines.append(_format_spinner_line(glyph, speed))

        # Only a terminal narrower than the suffix itself cuts a line
        for line in lines:
            frame.write(line[:line_width].ljust(line_width) + '\n')

        # Blank what is left of a taller previous frame
        leftover = self._lines_reserved - len(lines)
        if leftover > 0:
            frame.write(blank)
            for _ in range(leftover - 1):
                self.driver.move_cursor_down(frame, 1)
                frame.write(blank)
            self.driver.move_cursor_up(frame, leftover - 1)

        return len(lines)

    def _render_lines(self, frame: TextIO, percentage: Optional[int], speed: str) -> int:
        """Append-only output for logs and pipes"""
        if self._status_changed and self._status:
            frame.write(self._status + '\n')

        frame.write(_format_log_line(percentage, speed) + '\n')
        return 0

    def _terminal_width(self) -> int:
        try:
            width = int(self.driver.terminal_width(self.stream))
        except Exception:
            logger.debug('Terminal width query failed, assuming %d columns', _DEFAULT_TERMINAL_WIDTH, exc_info=True)
            return _DEFAULT_TERMINAL_WIDTH
        return width if width > 0 else _DEFAULT_TERMINAL_WIDTH

    def _write_frame(self, frame: io.StringIO):
        data = frame.getvalue()
        if not data:
            return
        self.stream.write(data)
        flush = getattr(self.stream, 'flush', None)
        if flush is not None:
            flush()


# ============================================================================
# Convenience Functions
# ============================================================================

def progress(iterable: Iterable,
             maximum: Optional[int] = None,
             status: Optional[str] = None,
             **kwargs: Any) -> Iterator:
    """
    Wrap an iterable to display progress automatically.

    The bar shows 100% only when the iterable is exhausted; leaving the loop
    early (break or an exception) stops it at the count reached.

    Example:
        for item in progress(items, status="Processing"):
            process(item)

    Args:
        iterable: The iterable to wrap
        maximum: Total items (taken from len() if possible, else a spinner)
        status: Status line shown above the bar
        **kwargs: Additional arguments for ProgressBar
    """
    if maximum is None:
        try:
            maximum = len(iterable)  # type: ignore[arg-type]
        except TypeError:
            maximum = 0

    bar = ProgressBar(maximum, **kwargs)
    if status:
        bar.set_status(status)

    with bar:
        for item in iterable:
            yield item
            bar.increment()

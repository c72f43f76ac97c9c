import io

import ttybar
from ttybar import (
    AnsiTerminalDriver,
    WindowsTerminalDriver,
    ProgressBar,
    default_driver,
    SPINNER_FRAMES_ASCII,
    SPINNER_FRAMES_UNICODE,
)

from conftest import RecordingStream


def test_cursor_sequences():
    driver = AnsiTerminalDriver()
    buf = io.StringIO()
    driver.hide_cursor(buf)
    driver.move_cursor_up(buf, 3)
    driver.move_cursor_down(buf, 2)
    driver.show_cursor(buf)
    assert buf.getvalue() == '\033[?25l\033[3A\033[2B\033[?25h'


def test_cursor_moves_ignore_non_positive():
    driver = AnsiTerminalDriver()
    buf = io.StringIO()
    driver.move_cursor_up(buf, 0)
    driver.move_cursor_up(buf, -4)
    driver.move_cursor_down(buf, 0)
    driver.move_cursor_down(buf, -1)
    assert buf.getvalue() == ''


def test_is_interactive(monkeypatch):
    monkeypatch.setenv('TERM', 'xterm-256color')
    driver = AnsiTerminalDriver()
    assert driver.is_interactive(RecordingStream(tty=True))
    assert not driver.is_interactive(RecordingStream(tty=False))
    assert not driver.is_interactive(io.StringIO())


def test_is_interactive_dumb_terminal(monkeypatch):
    monkeypatch.setenv('TERM', 'dumb')
    assert not AnsiTerminalDriver().is_interactive(RecordingStream(tty=True))


def test_is_interactive_probe_failures():
    driver = AnsiTerminalDriver()
    closed = io.StringIO()
    closed.close()
    assert not driver.is_interactive(closed)
    assert not driver.is_interactive(object())


def test_terminal_width_fallback(monkeypatch):
    monkeypatch.setenv('COLUMNS', '123')
    monkeypatch.setenv('LINES', '40')
    assert AnsiTerminalDriver().terminal_width(io.StringIO()) == 123


def test_windows_driver_without_console(monkeypatch):
    monkeypatch.setenv('TERM', 'xterm')
    # No console handle behind the stream
    assert not WindowsTerminalDriver().is_interactive(RecordingStream(tty=True))


def test_default_driver_per_platform(monkeypatch):
    monkeypatch.setattr(ttybar.os, 'name', 'posix')
    assert type(default_driver()) is AnsiTerminalDriver
    monkeypatch.setattr(ttybar.os, 'name', 'nt')
    assert type(default_driver()) is WindowsTerminalDriver


def test_spinner_frames_follow_stream_encoding(monkeypatch):
    monkeypatch.setenv('TERM', 'xterm')
    assert ProgressBar(0, stream=RecordingStream(encoding='utf-8')).frames == SPINNER_FRAMES_UNICODE
    assert ProgressBar(0, stream=RecordingStream(encoding='ascii')).frames == SPINNER_FRAMES_ASCII
    assert ProgressBar(0, stream=io.StringIO()).frames == SPINNER_FRAMES_ASCII


def test_spinner_frames_dumb_terminal(monkeypatch):
    monkeypatch.setenv('TERM', 'dumb')
    assert ProgressBar(0, stream=RecordingStream(encoding='utf-8')).frames == SPINNER_FRAMES_ASCII


def test_spinner_frames_override():
    bar = ProgressBar(0, stream=io.StringIO(), use_unicode=True)
    assert bar.frames == SPINNER_FRAMES_UNICODE

# -*- coding: utf-8 -*-
"""
pbar – A terminal progress bar that adapts to the window and survives interrupts.
Copyright (c) 2025 Igor Iatsenko
Licensed under the MIT License.
"""

import os
import sys
import errno
import signal
import time
import threading
import select
import fcntl
from contextlib import contextmanager
from dataclasses import dataclass
from queue import Queue
from typing import (
        Protocol,
        Optional,
        Tuple,
        List,
        Dict,
        Callable,
        Any,
        Iterable,
        Iterator,
        TextIO,
)
from enum import Enum
import logging

__all__ = [
    'progress',
    'ProgressBar',
    'ProgressState',
    'FrameRenderer',
    'SignalCoordinator',
    'UpdateChannel',
    'Geometry',
    'GeometrySource',
    'TerminalGeometryProvider',
    'LayoutTier',
    'RenderMode',
    'UpdatePath',
    'Theme',
    'Colors',
    'Ansi',
    'select_tier',
    'bar_width',
    'ProgressBarError',
    'NotATerminalError',
    'GeometryQueryError',
    'ChannelClosedError',
    'EXIT_STATUS_TERMINATED',
]

logger = logging.getLogger('pbar')

EXIT_STATUS_TERMINATED = 1

# Byte written to the wake pipe to unblock the listener without a signal
_WAKE = 0


# ============================================================================
# Errors
# ============================================================================

class ProgressBarError(Exception):
    """Base class for progress bar errors"""


class NotATerminalError(ProgressBarError):
    """Output is not an interactive terminal; rendering is disabled"""


class GeometryQueryError(ProgressBarError):
    """The terminal size could not be queried for a reason other than 'not a terminal'"""


class ChannelClosedError(ProgressBarError):
    """The update channel was closed by a prior cleanup"""


# ============================================================================
# Terminal utilities
# ============================================================================

class TerminalCapability(Enum):
    """Terminal capability levels"""
    MINIMAL = 1  # No ANSI colors
    BASIC = 2    # Basic ANSI colors


class Colors:
    """ANSI color codes"""
    RESET = '\033[0m'
    BOLD_RESET = '\033[1;0m'

    YELLOW = '\033[33m'
    BOLD_YELLOW = '\033[1;33m'
    BOLD_BRIGHT_GREEN = '\033[1;92m'
    BOLD_BRIGHT_BLUE = '\033[1;94m'


class Ansi:
    """VT100 cursor and screen control sequences"""
    SAVE_CURSOR = '\x1b7'
    RESTORE_CURSOR = '\x1b8'
    INDEX = '\033D'                 # Move down one line, scrolling if needed
    ERASE_LINE = '\033[2K'
    ERASE_TO_LINE_END = '\033[0K'
    ERASE_TO_SCREEN_END = '\033[0J'
    ERASE_TO_SCREEN_START = '\033[1J'
    ALT_SCREEN_ON = '\033[?47h'
    ALT_SCREEN_OFF = '\033[?47l'
    LINE_START = '\033[1000D'       # Move left far enough to hit column 1

    @staticmethod
    def cursor_to(row: int, col: int) -> str:
        """Move the cursor to row/col (CUP)"""
        return f'\033[{row};{col}H'

    @staticmethod
    def position(row: int, col: int) -> str:
        """Move the cursor to row/col (HVP)"""
        return f'\033[{row};{col}f'

    @staticmethod
    def scroll_region(top: int, bottom: int) -> str:
        """Restrict scrolling to the rows between top and bottom"""
        return f'\033[{top};{bottom}r'

    @staticmethod
    def cursor_up(lines: int) -> str:
        return f'\033[{lines}A'


class Theme:
    """Color theme for the progress line"""

    def __init__(self,
                 percentage_color: str = Colors.YELLOW,
                 label_percentage_color: str = Colors.BOLD_YELLOW,
                 progress_label_color: str = Colors.BOLD_BRIGHT_BLUE,
                 finished_label_color: str = Colors.BOLD_BRIGHT_GREEN,
                 reset: str = Colors.RESET,
                 label_reset: str = Colors.BOLD_RESET):
        self.percentage_color = percentage_color
        self.label_percentage_color = label_percentage_color
        self.progress_label_color = progress_label_color
        self.finished_label_color = finished_label_color
        self.reset = reset
        self.label_reset = label_reset

    @staticmethod
    def default():
        """Default color theme"""
        return Theme()

    @staticmethod
    def minimal():
        """Theme for minimal terminals (no colors)"""
        return Theme(
            percentage_color='',
            label_percentage_color='',
            progress_label_color='',
            finished_label_color='',
            reset='',
            label_reset='',
        )


def _detect_terminal_capability(stream: Optional[TextIO] = None) -> TerminalCapability:
    """Detect terminal capabilities"""
    if stream is None:
        stream = sys.stdout

    term = os.environ.get('TERM', '')
    colorterm = os.environ.get('COLORTERM', '')

    try:
        is_tty = stream.isatty()
    except (AttributeError, ValueError):
        is_tty = False

    if not is_tty:
        return TerminalCapability.MINIMAL

    if colorterm or (term and term != 'dumb'):
        return TerminalCapability.BASIC

    return TerminalCapability.MINIMAL


# ============================================================================
# Terminal Geometry
# ============================================================================

@dataclass(frozen=True)
class Geometry:
    """Snapshot of the terminal size"""
    columns: int
    rows: int
    is_terminal: bool

    @staticmethod
    def unavailable() -> 'Geometry':
        """Geometry used when there is nothing to draw on"""
        return Geometry(columns=0, rows=0, is_terminal=False)

    @property
    def renderable(self) -> bool:
        return self.is_terminal and self.columns > 0 and self.rows > 0


class GeometrySource(Protocol):
    """Anything that can report the current terminal geometry"""

    def query(self) -> Geometry:
        ...


class TerminalGeometryProvider:
    """Queries the OS for the size of the terminal behind an output stream"""

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    def query(self) -> Geometry:
        """
        Return the current geometry of the output stream's terminal.

        Raises:
            NotATerminalError: the stream is piped, redirected or not a file
            GeometryQueryError: the OS failed to report the size
        """
        stream = self._stream if self._stream is not None else sys.stdout

        try:
            fd = stream.fileno()
        except (AttributeError, ValueError, OSError) as e:
            raise NotATerminalError('output stream has no file descriptor') from e

        if not os.isatty(fd):
            raise NotATerminalError(f'file descriptor {fd} is not a terminal')

        try:
            columns, rows = os.get_terminal_size(fd)
        except OSError as e:
            if e.errno in (errno.ENOTTY, errno.ENODEV):
                raise NotATerminalError(f'file descriptor {fd} is not a terminal') from e
            raise GeometryQueryError(f'could not query the terminal size: {e}') from e

        return Geometry(columns=columns, rows=rows, is_terminal=True)


# ============================================================================
# Layout Policy
# ============================================================================

class LayoutTier(Enum):
    """Rendering tier selected from the terminal width"""
    MINIMAL = 'minimal'   # "[100%]"
    COMPACT = 'compact'   # "[100%] [###   ]"
    FULL = 'full'         # "Progress: [100%] [###   ]"

    @property
    def header_width(self) -> int:
        """Columns reserved for everything except the bar glyphs"""
        return _HEADER_WIDTHS[self]


_HEADER_WIDTHS = {
    LayoutTier.MINIMAL: len('[100%]'),
    LayoutTier.COMPACT: len('[100%] []'),
    LayoutTier.FULL: len('Progress: [100%] []'),
}

_MINIMAL_MAX_COLUMNS = 9
_COMPACT_MAX_COLUMNS = 20


def select_tier(columns: int) -> Tuple[LayoutTier, int]:
    """Map a terminal width to its tier and header reservation"""
    if columns <= _MINIMAL_MAX_COLUMNS:
        tier = LayoutTier.MINIMAL
    elif columns <= _COMPACT_MAX_COLUMNS:
        tier = LayoutTier.COMPACT
    else:
        tier = LayoutTier.FULL
    return tier, tier.header_width


def bar_width(columns: int, header_width: int) -> int:
    """Width left for bar glyphs once the header is reserved"""
    return max(0, columns - header_width)


# ============================================================================
# Progress State
# ============================================================================

class ProgressState:
    """Completed-vs-total counter that never passes 100%"""

    def __init__(self, total: int):
        if total < 1:
            raise ValueError("total must be positive")

        self.total = total
        self.completed = 0

    def clamp(self, increment: int) -> int:
        """Completed count after adding increment, capped at total"""
        if increment < 0:
            raise ValueError("increment must be non-negative")
        return min(self.total, self.completed + increment)

    def advance(self, increment: int) -> int:
        """Apply a clamped increment and return the new completed count"""
        self.completed = self.clamp(increment)
        return self.completed

    def percent_complete(self) -> int:
        return self.completed * 100 // self.total

    def is_finished(self) -> bool:
        return self.completed >= self.total

    def __repr__(self):
        return f"{type(self).__name__}(completed={self.completed}, total={self.total})"


# ============================================================================
# Frame Renderer
# ============================================================================

class RenderMode(Enum):
    SINGLE_LINE = 'single_line'
    MULTI_LINE = 'multi_line'   # Bar lives on a reserved bottom row


class FrameRenderer:
    """Builds the control sequences and text for one frame"""

    def __init__(self,
                 theme: Optional[Theme] = None,
                 done_glyph: str = '#',
                 ongoing_glyph: str = ' '):
        """
        Create a frame renderer.

        Args:
            theme: Color theme (default escape codes if not given)
            done_glyph: Glyph repeated for finished work
            ongoing_glyph: Glyph repeated for remaining work
        """
        if len(done_glyph) != 1 or len(ongoing_glyph) != 1:
            raise ValueError("glyphs must be single characters")

        self.theme = theme if theme is not None else Theme.default()
        self.done_glyph = done_glyph
        self.ongoing_glyph = ongoing_glyph

    def render_bar(self, state: ProgressState, width: int) -> str:
        """Render the bracketed bar, or nothing when there is no room"""
        if width <= 0:
            return ''

        done = width * state.completed // state.total
        return '[' + self.done_glyph * done + self.ongoing_glyph * (width - done) + ']'

    def render_text(self, state: ProgressState, columns: int) -> str:
        """Render the visible part of the frame for the given width"""
        tier, header = select_tier(columns)
        percent = state.percent_complete()
        bar = self.render_bar(state, bar_width(columns, header))
        bar_part = f' {bar}' if bar else ''

        if tier == LayoutTier.MINIMAL:
            return f'[{self.theme.percentage_color}{percent:3d}%{self.theme.reset}]'

        if tier == LayoutTier.COMPACT:
            return f'[{self.theme.percentage_color}{percent:3d}%{self.theme.reset}]{bar_part}'

        percentage = f'[{self.theme.label_percentage_color}{percent:3d}%{self.theme.reset}]'
        if state.is_finished():
            return f'{self.theme.finished_label_color}Finished: {self.theme.label_reset}{percentage}\n'
        return f'{self.theme.progress_label_color}Progress: {self.theme.label_reset}{percentage}{bar_part}'

    def render_frame(self, state: ProgressState, geometry: Geometry, mode: RenderMode) -> str:
        """Render a complete frame; empty when there is no terminal to draw on"""
        if not geometry.renderable:
            return ''

        text = self.render_text(state, geometry.columns)

        if mode == RenderMode.MULTI_LINE:
            return ''.join([
                Ansi.SAVE_CURSOR,
                Ansi.ERASE_LINE,
                Ansi.ERASE_TO_SCREEN_END,
                Ansi.ALT_SCREEN_ON,
                Ansi.ERASE_TO_SCREEN_START,
                Ansi.ALT_SCREEN_OFF,
                Ansi.cursor_to(geometry.rows, 0),
                text,
                Ansi.RESTORE_CURSOR,
            ])

        return Ansi.LINE_START + text

    def render_reserve(self, geometry: Geometry) -> str:
        """Reserve the bottom row by shrinking the scroll region above it"""
        if not geometry.renderable:
            return ''

        return ''.join([
            Ansi.INDEX,
            Ansi.SAVE_CURSOR,
            Ansi.scroll_region(0, geometry.rows - 1),
            Ansi.RESTORE_CURSOR,
            Ansi.cursor_up(1),
        ])

    def render_cleanup(self, geometry: Geometry, mode: RenderMode) -> str:
        """Release the reserved bottom row and put the cursor back"""
        if not geometry.renderable or mode != RenderMode.MULTI_LINE:
            return ''

        return ''.join([
            Ansi.SAVE_CURSOR,
            Ansi.scroll_region(0, geometry.rows),
            Ansi.position(geometry.rows, 0),
            Ansi.ERASE_TO_LINE_END,
            Ansi.RESTORE_CURSOR,
        ])


# ============================================================================
# Signal Coordinator
# ============================================================================

def _nonblocking_pipe() -> Tuple[int, int]:
    """Create a pipe for signal wakeup with both ends non-blocking"""
    read_fd, write_fd = os.pipe()
    for fd in (read_fd, write_fd):
        flags = fcntl.fcntl(fd, fcntl.F_GETFL)
        fcntl.fcntl(fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)
    return read_fd, write_fd


def _exit_process(status: int):
    """Terminate the process from the listener thread, where sys.exit() would only end the thread"""
    logging.shutdown()
    os._exit(status)


class SignalCoordinator:
    """Background listener turning resize and termination signals into callbacks"""

    class State(Enum):
        IDLE = 'idle'
        SHUTDOWN = 'shutdown'

    RESIZE_SIGNALS = (signal.SIGWINCH,)
    # SIGKILL cannot be caught, so it is not listed
    TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self,
                 on_resize: Callable[[], None],
                 on_terminate: Callable[[int], None],
                 install_handlers: bool = True):
        """
        Start listening for signals.

        Args:
            on_resize: Called on the listener thread after SIGWINCH
            on_terminate: Called on the listener thread with the signal number after SIGINT/SIGTERM
            install_handlers: Install OS signal handlers (main thread only)
        """
        self._on_resize = on_resize
        self._on_terminate = on_terminate

        self._shutdown = threading.Event()
        self._stop_lock = threading.Lock()
        self._pipe_lock = threading.RLock()
        self._prev_handlers: Dict[int, Any] = {}

        self._read_fd: Optional[int]
        self._write_fd: Optional[int]
        self._read_fd, self._write_fd = _nonblocking_pipe()

        if install_handlers:
            self._install_handlers()

        self._thread = threading.Thread(target=self._listen, name='pbar-signals', daemon=True)
        self._thread.start()

    @property
    def state(self) -> 'SignalCoordinator.State':
        if self._shutdown.is_set():
            return SignalCoordinator.State.SHUTDOWN
        return SignalCoordinator.State.IDLE

    @property
    def handlers_installed(self) -> bool:
        return any(signal.getsignal(signum) == self._handle_signal for signum in self._prev_handlers)

    def _install_handlers(self):
        try:
            for signum in self.RESIZE_SIGNALS + self.TERMINATION_SIGNALS:
                self._prev_handlers[signum] = signal.getsignal(signum)
                signal.signal(signum, self._handle_signal)
        except ValueError:
            # signal.signal() is only allowed on the main thread
            logger.warning('Signal handlers must be installed from the main thread; '
                           'resize and interrupt handling disabled')
            self._prev_handlers = {}

    def _restore_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return

        for signum, prev in list(self._prev_handlers.items()):
            # A later handler chained to ours still needs prev to forward to
            if signal.getsignal(signum) != self._handle_signal:
                continue
            signal.signal(signum, prev if prev is not None else signal.SIG_DFL)
            del self._prev_handlers[signum]

    def _handle_signal(self, signum, frame):
        if self._shutdown.is_set():
            prev = self._prev_handlers.get(signum)
            if signal.getsignal(signum) == self._handle_signal:
                self._restore_handlers()
                self._redeliver(signum, frame, prev)
            elif callable(prev):
                # Reached through a newer handler's chain: forward only, never re-raise
                prev(signum, frame)
            return

        self.notify(signum)

        if signum in self.RESIZE_SIGNALS:
            # Chain the previous SIGWINCH handler (if any)
            try:
                prev = self._prev_handlers.get(signum)
                if prev and prev not in (signal.SIG_DFL, signal.SIG_IGN) and callable(prev):
                    prev(signum, frame)
            except Exception:
                logger.exception('Chained SIGWINCH handler failed')

    @staticmethod
    def _redeliver(signum, frame, prev):
        """Hand a signal that arrived after shutdown to whoever had it before"""
        if callable(prev):
            prev(signum, frame)
        elif prev == signal.SIG_DFL or prev is None:
            os.kill(os.getpid(), signum)

    def notify(self, signum: int):
        """Queue a signal for the listener thread"""
        with self._pipe_lock:
            if self._write_fd is None:
                return
            try:
                os.write(self._write_fd, bytes([signum]))
            except (OSError, BlockingIOError):
                # Pipe might be full, the listener is already due to wake up
                pass

    def dispatch(self, signum: int):
        """Route one signal to its callback"""
        if self._shutdown.is_set():
            return

        if signum in self.RESIZE_SIGNALS:
            self._on_resize()
        elif signum in self.TERMINATION_SIGNALS:
            self._on_terminate(signum)
        else:
            logger.debug('Ignoring unexpected signal %d', signum)

    def stop(self):
        """Fire the shutdown token once and wake the listener so it exits"""
        with self._stop_lock:
            if not self._shutdown.is_set():
                self._shutdown.set()
                self.notify(_WAKE)

        self._restore_handlers()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _drain(self) -> List[int]:
        received = []
        with self._pipe_lock:
            if self._read_fd is None:
                return received
            try:
                while True:
                    chunk = os.read(self._read_fd, 1024)
                    if not chunk:
                        break
                    received.extend(chunk)
            except (OSError, BlockingIOError):
                pass  # Pipe is empty now
        return [signum for signum in received if signum != _WAKE]

    def _close_pipe(self):
        with self._pipe_lock:
            fds = (self._read_fd, self._write_fd)
            self._read_fd = self._write_fd = None
        for fd in fds:
            if fd is not None:
                os.close(fd)

    def _listen(self):
        error_count = 0
        max_errors = 10

        while not self._shutdown.is_set():
            try:
                read_fd = self._read_fd
                if read_fd is None:
                    break

                # Block until a signal or a wakeup arrives
                select.select([read_fd], [], [])

                for signum in self._drain():
                    if self._shutdown.is_set():
                        break
                    self.dispatch(signum)

                error_count = 0  # Reset on success
            except Exception:
                error_count += 1
                if error_count <= max_errors:
                    logger.exception('Signal listener failed (error %d/%d)', error_count, max_errors)
                elif error_count == max_errors + 1:
                    logger.error('Signal listener: suppressing further errors')
                # Continue despite errors, but stop spamming logs
                time.sleep(1)  # Back off on errors

        self._close_pipe()


# ============================================================================
# Update Channel
# ============================================================================

class UpdateChannel:
    """FIFO of increments applied one at a time by a single consumer thread"""

    _CLOSE = object()

    def __init__(self, consumer: Callable[[int], None], name: str = 'pbar-updates'):
        self._consumer = consumer
        self._queue: Queue = Queue()
        self._lock = threading.Lock()
        self._closed = False

        self._thread = threading.Thread(target=self._consume, name=name, daemon=True)
        self._thread.start()

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, count: int):
        """Enqueue an increment for the consumer"""
        with self._lock:
            if self._closed:
                raise ChannelClosedError("update channel is closed")
            self._queue.put(count)

    def close(self):
        """Stop accepting increments; queued ones are still consumed"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(self._CLOSE)

    def drain(self):
        """Block until every queued increment has been applied"""
        if threading.current_thread() is self._thread:
            return
        self._queue.join()

    def join(self, timeout: Optional[float] = None):
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _consume(self):
        while True:
            item = self._queue.get()
            try:
                if item is self._CLOSE:
                    return
                self._consumer(item)
            except Exception:
                logger.exception('Applying queued progress update failed')
            finally:
                self._queue.task_done()


# ============================================================================
# Progress Bar
# ============================================================================

class UpdatePath(Enum):
    DIRECT = 'direct'
    ASYNC = 'async'


class ProgressBar:
    """
    Live progress line for an interactive terminal.

    In direct mode ``add()`` draws on the calling thread and is not
    synchronized: callers with several producer threads must serialize their
    calls, for example with ``with bar.lock(): bar.add(1)``. In async mode
    ``add_async()`` hands increments to a single consumer thread, which is the
    only writer of frames. Frames, reservations and the cleanup sequence
    written by the consumer and the signal listener share the lock returned
    by ``lock()``, so a cleanup is never followed by a stale frame.
    """

    def __init__(self,
                 total: int,
                 mode: RenderMode = RenderMode.SINGLE_LINE,
                 update_path: UpdatePath = UpdatePath.DIRECT,
                 stream: Optional[TextIO] = None,
                 theme: Optional[Theme] = None,
                 done_glyph: str = '#',
                 ongoing_glyph: str = ' ',
                 geometry_provider: Optional[GeometrySource] = None,
                 handle_signals: Optional[bool] = None,
                 exit_handler: Optional[Callable[[int], None]] = None,
                 on_update: Optional[Callable[[int, int], None]] = None,
                 on_complete: Optional[Callable[[], None]] = None):
        """
        Create a progress bar.

        Args:
            total: Number of units that make 100% (must be positive)
            mode: Draw on the current line or on a reserved bottom row
            update_path: Apply updates directly or through a consumer thread
            stream: Output stream (default sys.stdout)
            theme: Color theme (auto-detected if not specified)
            done_glyph: Glyph for finished work
            ongoing_glyph: Glyph for remaining work
            geometry_provider: Source of terminal geometry (default: query the stream's terminal)
            handle_signals: Listen for resize/interrupt signals (default: only when rendering)
            exit_handler: Called with the exit status after an interrupt (default: exit the process)
            on_update: Callback on progress update (completed, percent)
            on_complete: Callback when progress completes
        """
        self._state = ProgressState(total)
        self._mode = mode
        self._update_path = update_path
        self._stream = stream

        if theme is None:
            if _detect_terminal_capability(self.stream) == TerminalCapability.MINIMAL:
                theme = Theme.minimal()
            else:
                theme = Theme.default()

        self._renderer = FrameRenderer(theme=theme, done_glyph=done_glyph, ongoing_glyph=ongoing_glyph)
        self._provider: GeometrySource = geometry_provider or TerminalGeometryProvider(stream)
        self._exit_handler = exit_handler or _exit_process
        self.on_update = on_update
        self.on_complete = on_complete

        # Orders frames from the consumer against writes from the signal listener
        self._render_lock = threading.RLock()
        self._cleanup_lock = threading.Lock()
        self._cleaned_up = False
        self._enqueue_lock = threading.Lock()
        self._enqueued = 0

        self._geometry = self._initial_geometry()
        if self._mode == RenderMode.MULTI_LINE:
            self._write(self._renderer.render_reserve(self._geometry))

        if handle_signals is None:
            handle_signals = self._geometry.renderable

        self._coordinator: Optional[SignalCoordinator] = None
        if handle_signals:
            self._coordinator = SignalCoordinator(on_resize=self._handle_resize,
                                                  on_terminate=self._handle_termination)

        self._channel: Optional[UpdateChannel] = None
        if self._update_path == UpdatePath.ASYNC:
            self._channel = UpdateChannel(self._apply_queued)

    @classmethod
    def asynchronous(cls, total: int, **kwargs) -> 'ProgressBar':
        """Single-line bar fed through a consumer thread"""
        return cls(total, update_path=UpdatePath.ASYNC, **kwargs)

    @classmethod
    def multiline(cls, total: int, **kwargs) -> 'ProgressBar':
        """Bar drawn on a reserved bottom row, leaving the rest of the screen to the program"""
        return cls(total, mode=RenderMode.MULTI_LINE, **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    @property
    def total(self) -> int:
        return self._state.total

    @property
    def completed(self) -> int:
        return self._state.completed

    @property
    def percent(self) -> int:
        return self._state.percent_complete()

    def is_finished(self) -> bool:
        return self._state.is_finished()

    @property
    def mode(self) -> RenderMode:
        return self._mode

    @property
    def update_path(self) -> UpdatePath:
        return self._update_path

    @property
    def geometry(self) -> Geometry:
        return self._geometry

    @property
    def tier(self) -> LayoutTier:
        return select_tier(self._geometry.columns)[0]

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned_up

    @property
    def coordinator(self) -> Optional[SignalCoordinator]:
        return self._coordinator

    @contextmanager
    def lock(self):
        """Lock for callers driving add() from several threads"""
        with self._render_lock:
            yield self._render_lock

    def add(self, count: int = 1):
        """Add count completed units and redraw"""
        if count < 0:
            raise ValueError("count must be non-negative")

        state = self._state
        if self._cleaned_up or state.is_finished():
            self.cleanup()
            return

        state.advance(count)
        self._notify_update()

        frame = self._renderer.render_frame(state, self._geometry, self._mode)
        if frame:
            self._write(frame)

        if state.is_finished():
            self._notify_complete()
            self.cleanup()

    def add_async(self, count: int = 1):
        """Queue count completed units for the consumer thread"""
        if count < 0:
            raise ValueError("count must be non-negative")

        if self._channel is None:
            logger.warning('add_async() called on a bar without an update channel; ignoring')
            return

        # Counting and enqueueing happen together so the increment that reaches
        # the total is always the last one in the queue
        with self._enqueue_lock:
            if self._enqueued >= self._state.total:
                return
            try:
                self._channel.send(count)
            except ChannelClosedError:
                logger.debug('Dropping progress update of %d, update channel already closed', count)
                return
            self._enqueued = min(self._state.total, self._enqueued + count)
            final = self._enqueued >= self._state.total

        if final:
            # Let the consumer draw the final frame before releasing the terminal
            self._channel.drain()
            with self._render_lock:
                self.cleanup()

    def refresh_geometry(self) -> Geometry:
        """
        Re-query the terminal size and re-reserve the bottom row in multiline mode.

        Raises:
            GeometryQueryError: the size could not be queried; the previous geometry stays in effect
        """
        try:
            geometry = self._provider.query()
        except NotATerminalError:
            geometry = Geometry.unavailable()

        self._geometry = geometry
        if self._mode == RenderMode.MULTI_LINE and not self._cleaned_up:
            self._write(self._renderer.render_reserve(geometry))
        return geometry

    def cleanup(self):
        """Release the terminal; runs once, later calls do nothing"""
        with self._cleanup_lock:
            if self._cleaned_up:
                return
            self._cleaned_up = True

        if self._channel is not None:
            self._channel.close()
        if self._coordinator is not None:
            self._coordinator.stop()

        self._write(self._renderer.render_cleanup(self._geometry, self._mode))

    def close(self):
        """Clean up and stop background threads"""
        self.cleanup()
        if self._coordinator is not None:
            self._coordinator.stop()

    def _initial_geometry(self) -> Geometry:
        try:
            return self._provider.query()
        except NotATerminalError:
            logger.debug('Output is not a terminal; progress rendering disabled')
        except GeometryQueryError:
            logger.exception('Could not query the terminal size; progress rendering disabled')
        return Geometry.unavailable()

    def _apply_queued(self, count: int):
        with self._render_lock:
            self.add(count)

    def _handle_resize(self):
        with self._render_lock:
            try:
                self.refresh_geometry()
            except GeometryQueryError:
                logger.exception('Could not refresh the terminal size; progress rendering disabled')
                self._geometry = Geometry.unavailable()

    def _handle_termination(self, signum: int):
        logger.debug('Received signal %d, restoring the terminal', signum)
        with self._render_lock:
            self.cleanup()
        self._exit_handler(EXIT_STATUS_TERMINATED)

    def _notify_update(self):
        if self.on_update:
            try:
                self.on_update(self._state.completed, self._state.percent_complete())
            except Exception:
                logger.exception('on_update callback failed')

    def _notify_complete(self):
        if self.on_complete:
            try:
                self.on_complete()
            except Exception:
                logger.exception('on_complete callback failed')

    def _write(self, data: str):
        if not data:
            return
        stream = self.stream
        stream.write(data)
        stream.flush()


# ============================================================================
# Convenience Functions
# ============================================================================

def progress(iterable: Iterable,
             total: int = 0,
             **kwargs) -> Iterator:
    """
    Wrap an iterable to display progress automatically.

    Example:
        for item in progress([1, 2, 3, 4, 5]):
            process(item)

    Args:
        iterable: The iterable to wrap
        total: Total items (auto-detected if possible)
        **kwargs: Additional arguments for ProgressBar
    """
    if not total:
        try:
            total = len(iterable)  # type: ignore[arg-type]
        except TypeError:
            raise ValueError("total is required for iterables without a length")

    if total <= 0:
        yield from iterable
        return

    with ProgressBar(total, **kwargs) as bar:
        for item in iterable:
            yield item
            bar.add(1)

"""
Session harness and overlay rendering for full-screen terminal applications.

This module provides a scoped terminal session that owns raw mode and the
alternate screen, a double-buffered drawing surface, input event sources,
and a bordered popup widget that paints over existing buffer contents.
"""

import asyncio
import inspect
import logging
import re
import signal
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, FrozenSet, List, Optional, Tuple, Union

from blessed import Terminal
from wcwidth import wcwidth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    """A rectangular region of the screen, in cells.

    Attributes:
        x: Left column
        y: Top row
        width: Number of columns
        height: Number of rows
    """
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def left(self) -> int:
        return self.x

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def top(self) -> int:
        return self.y

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contains(self, x: int, y: int) -> bool:
        return self.left <= x < self.right and self.top <= y < self.bottom

    def inner(self, margin: int = 1) -> "Rect":
        """Shrink by ``margin`` on every side, never below zero size."""
        width = max(0, self.width - 2 * margin)
        height = max(0, self.height - 2 * margin)
        return Rect(
            self.x + min(margin, self.width // 2),
            self.y + min(margin, self.height // 2),
            width,
            height,
        )

    def intersection(self, other: "Rect") -> "Rect":
        """Return the overlap of two rectangles (empty if they don't overlap)."""
        left = max(self.left, other.left)
        top = max(self.top, other.top)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= left or bottom <= top:
            return Rect(left, top, 0, 0)
        return Rect(left, top, right - left, bottom - top)

    @staticmethod
    def _clamp(val, maxval):
        """Clamp a size to 0..maxval, handling relative float values."""
        if isinstance(val, float):
            # Interpret as relative value (0.0-1.0) and scale to container size
            return max(0, min(maxval, int(round(val * maxval))))
        return max(0, min(maxval, val))

    def centered(self, width: Union[int, float], height: Union[int, float]) -> "Rect":
        """Return a child rectangle centred within this one.

        Float sizes are fractions of this rectangle's size, so a popup built
        with ``centered(0.6, 0.4)`` keeps its proportions when the terminal
        is resized.
        """
        w = Rect._clamp(width, self.width)
        h = Rect._clamp(height, self.height)
        return Rect(
            self.x + (self.width - w) // 2,
            self.y + (self.height - h) // 2,
            w,
            h,
        )


@dataclass(frozen=True)
class Style:
    """Colors and attributes for a cell, expressed as blessed formatter names.

    Attributes:
        fg: Foreground color name (``"red"``, ``"bright_blue"``, ``"gray30"``)
        bg: Background color name
        attrs: Attribute names such as ``bold``, ``italic`` or ``reverse``
    """
    fg: Optional[str] = None
    bg: Optional[str] = None
    attrs: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if not isinstance(self.attrs, frozenset):
            object.__setattr__(self, 'attrs', frozenset(self.attrs))

    def patch(self, other: Optional["Style"]) -> "Style":
        """Overlay ``other`` on this style: its colors win when set."""
        if other is None:
            return self
        return Style(
            fg=other.fg or self.fg,
            bg=other.bg or self.bg,
            attrs=self.attrs | other.attrs,
        )

    def formatter_name(self) -> str:
        """Compound formatter name understood by blessed, e.g. ``bold_red_on_blue``."""
        parts = sorted(self.attrs)
        if self.fg:
            parts.append(self.fg)
        if self.bg:
            parts.append('on_' + self.bg)
        return '_'.join(parts)

    def sequence(self, term: Terminal) -> str:
        """Resolve this style to an escape sequence for ``term``."""
        name = self.formatter_name()
        if not name:
            return ''
        return str(getattr(term, name, '') or '')


@dataclass
class Cell:
    """A single screen cell. An empty symbol marks the right half of a wide character."""
    symbol: str = ' '
    style: Style = field(default_factory=Style)

    def reset(self):
        self.symbol = ' '
        self.style = Style()


class Buffer:
    """A grid of cells covering ``area``, addressed by absolute coordinates."""

    def __init__(self, area: Rect):
        self.area = area
        self.content: List[Cell] = [Cell() for _ in range(area.area)]

    def _index(self, x: int, y: int) -> int:
        if not self.area.contains(x, y):
            raise IndexError(f"({x}, {y}) is outside {self.area}")
        return (y - self.area.y) * self.area.width + (x - self.area.x)

    def __getitem__(self, pos: Tuple[int, int]) -> Cell:
        return self.content[self._index(*pos)]

    def reset(self):
        for cell in self.content:
            cell.reset()

    def resize(self, area: Rect):
        self.area = area
        self.content = [Cell() for _ in range(area.area)]

    def set_string(self, x: int, y: int, text: str,
                   style: Optional[Style] = None,
                   max_width: Optional[int] = None) -> int:
        """Write ``text`` starting at ``(x, y)``, clipped to the buffer and ``max_width``.

        Returns the column after the last cell written.
        """
        if y < self.area.top or y >= self.area.bottom:
            return x
        limit = self.area.right
        if max_width is not None:
            limit = min(limit, x + max(0, max_width))
        col = x
        last = None
        for ch in text:
            width = wcwidth(ch)
            if width < 0:
                continue
            if width == 0:
                if last is not None:
                    last.symbol += ch
                continue
            if col + width > limit:
                break
            if col >= self.area.left:
                cell = self[col, y]
                if cell.symbol == '' and col > self.area.left:
                    # Overwrote the right half of a wide character
                    self[col - 1, y].symbol = ' '
                cell.symbol = ch
                cell.style = cell.style.patch(style)
                last = cell
                if width == 2:
                    trailing = self[col + 1, y]
                    trailing.symbol = ''
                    trailing.style = trailing.style.patch(style)
                if col + width < self.area.right and self[col + width, y].symbol == '':
                    # Overwrote the left half of a wide character
                    self[col + width, y].symbol = ' '
            col += width
        return col

    def set_style(self, area: Rect, style: Style):
        """Patch ``style`` onto every cell of ``area`` without touching symbols."""
        area = area.intersection(self.area)
        for y in range(area.top, area.bottom):
            for x in range(area.left, area.right):
                cell = self[x, y]
                cell.style = cell.style.patch(style)

    def lines(self) -> List[str]:
        """Plain-text rows of the buffer."""
        width = self.area.width
        return [
            ''.join(cell.symbol for cell in self.content[row * width:(row + 1) * width])
            for row in range(self.area.height)
        ]

    def diff(self, other: "Buffer") -> List[Tuple[int, int, Cell]]:
        """Cells of ``other`` that differ from this buffer, in row-major order."""
        updates = []
        width = self.area.width
        for i, (old, new) in enumerate(zip(self.content, other.content)):
            if old == new or new.symbol == '':
                continue
            x = self.area.x + i % width
            y = self.area.y + i // width
            updates.append((x, y, new))
        return updates


class Frame:
    """One frame being painted; passed to the draw callback.

    Attributes:
        buffer: The buffer the frame paints into
        count: Number of frames completed before this one
    """

    def __init__(self, buffer: Buffer, count: int = 0):
        self.buffer = buffer
        self.count = count

    @property
    def area(self) -> Rect:
        return self.buffer.area

    def render_widget(self, widget, area: Optional[Rect] = None):
        """Render any object with a ``render(area, buf)`` method."""
        widget.render(area if area is not None else self.area, self.buffer)


class Surface:
    """Double-buffered drawing surface bound to a blessed Terminal.

    Each draw paints into a fresh buffer and writes only the cells that
    changed since the previous frame.
    """

    def __init__(self, term: Terminal, stream=None):
        self.term = term
        self.stream = stream if stream is not None else term.stream
        area = self.size()
        self._buffers = [Buffer(area), Buffer(area)]
        self._current = 0
        self._frame_count = 0
        self._needs_clear = True

    def size(self) -> Rect:
        return Rect(0, 0, self.term.width, self.term.height)

    @property
    def current_buffer(self) -> Buffer:
        return self._buffers[self._current]

    @property
    def previous_buffer(self) -> Buffer:
        return self._buffers[1 - self._current]

    def clear(self):
        """Force a full repaint on the next draw."""
        self._needs_clear = True

    def _autoresize(self):
        area = self.size()
        if area != self.current_buffer.area:
            logger.debug("Terminal resized to %dx%d", area.width, area.height)
            for buf in self._buffers:
                buf.resize(area)
            self._needs_clear = True

    def draw(self, callback: Callable[[Frame], Any]) -> Frame:
        """Paint one frame with ``callback`` and flush the changes."""
        self._autoresize()
        frame = Frame(self.current_buffer, self._frame_count)
        callback(frame)
        self.flush()
        self._swap_buffers()
        self._frame_count += 1
        return frame

    def flush(self):
        if self._needs_clear:
            self._needs_clear = False
            self.previous_buffer.reset()
            print(self.term.home + self.term.clear, end='', file=self.stream)
        out = []
        cursor = None
        style = None
        for x, y, cell in self.previous_buffer.diff(self.current_buffer):
            if cursor != (x, y):
                out.append(self.term.move_xy(x, y))
            if cell.style != style:
                style = cell.style
                out.append(self.term.normal + style.sequence(self.term))
            out.append(cell.symbol)
            cursor = (x + (2 if wcwidth(cell.symbol[0]) == 2 else 1), y)
        if out:
            out.append(self.term.normal)
        print(''.join(out), end='', file=self.stream, flush=True)

    def _swap_buffers(self):
        self.previous_buffer.reset()
        self._current = 1 - self._current


@dataclass(frozen=True)
class Resize:
    """Terminal size changed."""
    width: int
    height: int


class KeyboardEvents:
    """Async source of blessed keystrokes and resize events.

    Polls ``term.inkey`` without blocking, sleeping ``poll_interval`` seconds
    between empty polls so other tasks keep running. The terminal must already
    be in raw or cbreak mode.
    """

    def __init__(
        self,
        term: Terminal,
        *,
        poll_interval: float = 0.01,
        register_resize_handler: bool = True,
    ):
        self.term = term
        self.poll_interval = poll_interval
        self._resize_pending = False
        self._lookahead = None
        self._prev_sigwinch = None
        if register_resize_handler and hasattr(signal, 'SIGWINCH'):
            self._prev_sigwinch = signal.signal(signal.SIGWINCH, self._handle_sigwinch)

    def _handle_sigwinch(self, signum, frame):
        self._resize_pending = True

    def pending(self) -> bool:
        if self._resize_pending or self._lookahead:
            return True
        # inkey() keeps unread bytes in blessed's own buffer, which kbhit() doesn't see
        key = self.term.inkey(timeout=0)
        if key:
            self._lookahead = key
            return True
        return False

    def close(self):
        """Restore the SIGWINCH handler that was active before this source."""
        if self._prev_sigwinch is not None:
            signal.signal(signal.SIGWINCH, self._prev_sigwinch)
            self._prev_sigwinch = None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._lookahead:
            key, self._lookahead = self._lookahead, None
            return key
        while True:
            if self._resize_pending:
                self._resize_pending = False
                return Resize(self.term.width, self.term.height)
            key = self.term.inkey(timeout=0)
            if key:
                return key
            await asyncio.sleep(self.poll_interval)


class EventQueue:
    """In-memory event source. ``close()`` ends the stream after queued events."""

    _CLOSED = object()

    def __init__(self, events=()):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        for event in events:
            self.put(event)

    def put(self, event):
        if self._closed:
            raise HarnessError("cannot put events on a closed EventQueue")
        self._queue.put_nowait(event)

    def close(self):
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def pending(self) -> bool:
        return not self._queue.empty()

    def __aiter__(self):
        return self

    async def __anext__(self):
        event = await self._queue.get()
        if event is self._CLOSED:
            # Leave the sentinel in place so later reads also end.
            self._queue.put_nowait(self._CLOSED)
            raise StopAsyncIteration
        return event


class HarnessError(RuntimeError):
    """Base class for misuse of the session harness."""


class SessionActiveError(HarnessError):
    """Another TerminalSession already owns the terminal."""


class SessionClosedError(HarnessError):
    """The session is not entered, so it doesn't own the terminal."""


class Continue:
    """Update outcome: keep running."""

    def __repr__(self):
        return 'CONTINUE'


CONTINUE = Continue()


@dataclass(frozen=True)
class Stop:
    """Update outcome: leave the run loop gracefully, carrying ``reason``."""
    reason: Any = None


@dataclass(frozen=True)
class EndOfStream(Stop):
    """The event source closed."""
    reason: Any = 'end of stream'


class TerminalDriver:
    """Toggles raw mode and the alternate screen using blessed context managers.

    Each mode is held in its own ExitStack so the two can be restored
    independently.
    """

    def __init__(self, term: Terminal, *, hide_cursor: bool = True):
        self.term = term
        self.hide_cursor = hide_cursor
        self._raw: Optional[ExitStack] = None
        self._screen: Optional[ExitStack] = None

    def enable_raw_mode(self):
        stack = ExitStack()
        stack.enter_context(self.term.raw())
        self._raw = stack

    def disable_raw_mode(self):
        stack, self._raw = self._raw, None
        if stack is not None:
            stack.close()

    def enter_alternate_screen(self):
        with ExitStack() as stack:
            stack.enter_context(self.term.fullscreen())
            if self.hide_cursor:
                stack.enter_context(self.term.hidden_cursor())
            self._screen = stack.pop_all()

    def leave_alternate_screen(self):
        stack, self._screen = self._screen, None
        if stack is not None:
            stack.close()


_session_lock = threading.Lock()
_active_session: Optional["TerminalSession"] = None


def active_session() -> Optional["TerminalSession"]:
    """Return the session that currently owns the terminal, if any."""
    return _active_session


class TerminalSession:
    """Owns the terminal for the duration of a ``with`` block and drives the UI loop.

    Entering the session enables raw mode, switches to the alternate screen
    and binds a drawing surface; leaving it restores both modes whatever
    ended the block. Only one session may be entered per process.

    ``draw`` is called synchronously with a :class:`Frame` once per render.
    ``update`` is called with each input event; it may be a coroutine
    function and may return ``None``/``CONTINUE`` to keep going or a
    :class:`Stop` to end :meth:`run`. Exceptions it raises end :meth:`run`
    and propagate unchanged.

    If entering fails part way (for example raw mode succeeded but the
    alternate screen could not be entered) the earlier mode change is not
    rolled back.

    Example::

        async def main():
            with TerminalSession(draw, update) as session:
                outcome = await session.run()
    """

    def __init__(
        self,
        draw: Callable[[Frame], Any],
        update: Callable[[Any], Any],
        *,
        term: Optional[Terminal] = None,
        events=None,
        driver: Optional[TerminalDriver] = None,
        surface: Optional[Surface] = None,
        hide_cursor: bool = True,
    ):
        self.draw = draw
        self.update = update
        self.term = term or Terminal()
        self.driver = driver or TerminalDriver(self.term, hide_cursor=hide_cursor)
        self.events = events
        self.surface = surface
        self._owns_events = False
        self._entered = False

    def __enter__(self):
        global _active_session
        with _session_lock:
            if _active_session is not None:
                raise SessionActiveError(
                    "A TerminalSession is already active; leave it before "
                    "entering another."
                )
            _active_session = self

        try:
            self.driver.enable_raw_mode()
            self.driver.enter_alternate_screen()
            if self.surface is None:
                self.surface = Surface(self.term)
            else:
                self.surface.clear()
            if self.events is None:
                self.events = KeyboardEvents(self.term)
                self._owns_events = True
        except BaseException:
            logger.warning("Failed to take over the terminal", exc_info=True)
            self._release()
            raise

        self._entered = True
        logger.debug("Terminal session entered")
        return self

    def __exit__(self, exc_type, exc, tb):
        self._entered = False
        try:
            self._restore()
        finally:
            if self._owns_events:
                self.events.close()
                self.events = None
                self._owns_events = False
            self._release()
        logger.debug("Terminal session left")
        return False

    def _restore(self):
        try:
            self.driver.disable_raw_mode()
        except Exception:
            logger.debug("Failed to disable raw mode", exc_info=True)
        finally:
            try:
                self.driver.leave_alternate_screen()
            except Exception:
                logger.debug("Failed to leave the alternate screen", exc_info=True)

    def _release(self):
        global _active_session
        with _session_lock:
            if _active_session is self:
                _active_session = None

    async def _dispatch(self, event):
        outcome = self.update(event)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    async def run(self) -> Stop:
        """Render, then handle input, until a Stop outcome or the events end.

        Each iteration draws one frame, waits for the next event, then also
        handles every event that is already available before drawing again.
        Returns the :class:`Stop` from ``update`` or :class:`EndOfStream`.
        """
        if not self._entered:
            raise SessionClosedError(
                "TerminalSession.run() called outside its with-block."
            )

        events = self.events
        pending = getattr(events, 'pending', None)

        while True:
            self.surface.draw(self.draw)

            handled = 0
            while handled == 0 or (pending is not None and pending()):
                try:
                    event = await events.__anext__()
                except StopAsyncIteration:
                    logger.debug("Event source closed")
                    return EndOfStream()

                outcome = await self._dispatch(event)
                handled += 1
                if isinstance(outcome, Stop):
                    logger.debug("Update requested stop: %r", outcome.reason)
                    return outcome


async def run_app(draw: Callable[[Frame], Any], update: Callable[[Any], Any],
                  **session_options) -> Stop:
    """Run ``draw``/``update`` in a new TerminalSession, restoring the terminal on exit."""
    with TerminalSession(draw, update, **session_options) as session:
        return await session.run()


_WHITESPACE_RE = re.compile(r'(\s+)')


def display_width(text: str) -> int:
    """Number of terminal cells ``text`` occupies."""
    return sum(max(0, wcwidth(ch)) for ch in text)


def _split_word(word: str, width: int) -> List[str]:
    pieces = []
    current, current_width = '', 0
    for ch in word:
        ch_width = max(0, wcwidth(ch))
        if current and current_width + ch_width > width:
            pieces.append(current)
            current, current_width = '', 0
        current += ch
        current_width += ch_width
    if current:
        pieces.append(current)
    return pieces


def wrap_cells(text: str, width: int) -> List[str]:
    """Word-wrap ``text`` to ``width`` terminal cells.

    Whitespace at line breaks is trimmed and words wider than a line are
    split. Double-width characters count as two cells.
    """
    lines = []
    current, current_width = '', 0
    gap = ''
    for chunk in _WHITESPACE_RE.split(text.expandtabs().strip()):
        if not chunk:
            continue
        if chunk.isspace():
            gap = chunk
            continue
        chunk_width = display_width(chunk)
        gap_width = display_width(gap)
        gap = ''
        if current and current_width + gap_width + chunk_width <= width:
            current += ' ' * gap_width + chunk
            current_width += gap_width + chunk_width
            continue
        if current:
            lines.append(current)
        if chunk_width <= width:
            current, current_width = chunk, chunk_width
        else:
            pieces = _split_word(chunk, width)
            lines.extend(pieces[:-1])
            current = pieces[-1]
            current_width = display_width(current)
    if current:
        lines.append(current)
    return lines


@dataclass(frozen=True)
class BorderSet:
    """Characters used to draw a box border."""
    top_left: str
    top_right: str
    bottom_left: str
    bottom_right: str
    horizontal: str
    vertical: str


BORDER_PLAIN = BorderSet('┌', '┐', '└', '┘', '─', '│')
BORDER_ASCII = BorderSet('+', '+', '+', '+', '-', '|')


@dataclass(frozen=True)
class Popup:
    """A bordered box with a title and wrapped body text.

    Painted over whatever the buffer already holds: cells the border and
    text don't cover keep their symbols. Text that doesn't fit the interior
    is clipped, not scrolled.

    Attributes:
        title: Text embedded in the top border
        content: Body text (string, list, or tuple of lines)
        border_style: Style of the border
        title_style: Style patched over the border style for the title
        style: Style of the whole box, including the body text
        borders: Border characters
    """
    title: str = ''
    content: Union[str, List[str], Tuple[str, ...]] = ''
    border_style: Style = Style()
    title_style: Style = Style()
    style: Style = Style()
    borders: BorderSet = BORDER_PLAIN

    def with_options(self, **options) -> "Popup":
        """Return a copy with the given options changed."""
        known = {f.name for f in fields(self)}
        unknown = set(options) - known
        if unknown:
            raise TypeError(f"unknown Popup options: {', '.join(sorted(unknown))}")
        return replace(self, **options)

    def _body_lines(self, width: int) -> List[str]:
        text = self.content
        if isinstance(text, (list, tuple)):
            text = "\n".join(text)
        lines = []
        for line in text.splitlines() or ['']:
            lines.extend(wrap_cells(line, width) or [''])
        return lines

    def _render_border(self, area: Rect, buf: Buffer):
        b = self.borders
        style = self.border_style
        for x in range(area.left, area.right):
            buf.set_string(x, area.top, b.horizontal, style)
            buf.set_string(x, area.bottom - 1, b.horizontal, style)
        for y in range(area.top, area.bottom):
            buf.set_string(area.left, y, b.vertical, style)
            buf.set_string(area.right - 1, y, b.vertical, style)
        buf.set_string(area.left, area.top, b.top_left, style)
        buf.set_string(area.right - 1, area.top, b.top_right, style)
        buf.set_string(area.left, area.bottom - 1, b.bottom_left, style)
        buf.set_string(area.right - 1, area.bottom - 1, b.bottom_right, style)

        if self.title and area.width > 2:
            buf.set_string(
                area.left + 1, area.top, self.title,
                style.patch(self.title_style),
                max_width=area.width - 2,
            )

    def render(self, area: Rect, buf: Buffer):
        area = area.intersection(buf.area)
        if area.is_empty:
            return

        buf.set_style(area, self.style)
        self._render_border(area, buf)

        inner = area.inner()
        if inner.is_empty:
            return
        for row, line in enumerate(self._body_lines(inner.width)[:inner.height]):
            buf.set_string(inner.left, inner.top + row, line, self.style,
                           max_width=inner.width)

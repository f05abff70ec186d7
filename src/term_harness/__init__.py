"""
Terminal Session Harness

A small runtime for full-screen terminal applications built on the Blessed library.
Owns raw mode and the alternate screen for the lifetime of a session, drives a
render/update loop, and restores the terminal on every exit path. Also provides
a bordered popup widget for painting overlays.
"""

import logging

from .term_harness import (
    Rect,
    Style,
    Cell,
    Buffer,
    Frame,
    Surface,
    Resize,
    KeyboardEvents,
    EventQueue,
    HarnessError,
    SessionActiveError,
    SessionClosedError,
    Continue,
    CONTINUE,
    Stop,
    EndOfStream,
    TerminalDriver,
    TerminalSession,
    active_session,
    run_app,
    BorderSet,
    BORDER_PLAIN,
    BORDER_ASCII,
    Popup,
    display_width,
    wrap_cells,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    'Rect',
    'Style',
    'Cell',
    'Buffer',
    'Frame',
    'Surface',
    'Resize',
    'KeyboardEvents',
    'EventQueue',
    'HarnessError',
    'SessionActiveError',
    'SessionClosedError',
    'Continue',
    'CONTINUE',
    'Stop',
    'EndOfStream',
    'TerminalDriver',
    'TerminalSession',
    'active_session',
    'run_app',
    'BorderSet',
    'BORDER_PLAIN',
    'BORDER_ASCII',
    'Popup',
    'display_width',
    'wrap_cells',
]

__version__ = '0.1.0'

"""
Driver signal policy.

The driver never reacts to the interactive interrupt: Ctrl-C at the terminal
reaches the target command as well, and it is the command's to handle. The
whole tool is left through a separate quit signal, whose handler raises
KeyboardInterrupt so that ``finally`` blocks up the stack abort the current
generation before the process exits.
"""

from __future__ import annotations

import signal
from collections.abc import Iterable
from typing import Any

DEFAULT_QUIT_SIGNALS = (signal.SIGQUIT, signal.SIGTERM)


class ShutdownManager:
    """
    Manages the driver's signal dispositions.

    Usage:
        manager = ShutdownManager()
        manager.register_signal_handlers()
        try:
            run()
        except KeyboardInterrupt:
            return manager.get_signal_return_code()
        finally:
            manager.restore()
    """

    def __init__(self, quit_signals: Iterable[signal.Signals] = DEFAULT_QUIT_SIGNALS) -> None:
        self._quit_signals = tuple(signal.Signals(s) for s in quit_signals)
        if signal.SIGINT in self._quit_signals:
            raise ValueError("SIGINT is reserved for the command and cannot quit")
        self._shutting_down = False
        self._signal: signal.Signals | None = None
        self._original_handlers: dict[signal.Signals, Any] = {}

    @property
    def quit_signals(self) -> tuple[signal.Signals, ...]:
        return self._quit_signals

    def register_signal_handlers(self) -> None:
        """Ignore SIGINT and make every quit signal raise KeyboardInterrupt."""
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, signal.SIG_IGN)
        for sig in self._quit_signals:
            self._original_handlers[sig] = signal.signal(sig, self._handle_signal)

    def restore(self) -> None:
        """Reinstate the handlers that were active before registration."""
        while self._original_handlers:
            sig, handler = self._original_handlers.popitem()
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        """
        Handle a quit signal by raising KeyboardInterrupt.

        Args:
            signum: Signal number
            frame: Current stack frame (unused)
        """
        if self._shutting_down:
            return  # Ignore duplicate signals

        self._shutting_down = True
        self._signal = signal.Signals(signum)
        raise KeyboardInterrupt()

    def is_shutting_down(self) -> bool:
        """Check if shutdown is in progress."""
        return self._shutting_down

    @property
    def received(self) -> signal.Signals | None:
        """The quit signal that started shutdown, if any."""
        return self._signal

    def get_signal_return_code(self) -> int:
        """
        Get the return code for a shutdown by quit signal.

        Quitting is the normal way to end a session, so this is always 0.
        """
        return 0

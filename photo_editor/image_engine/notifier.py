"""Thread-affine dispatch for loader notifications.

The loader hands its "bitmaps changed" fan-out to a dispatch callable. The
Qt implementation here posts the callback to whichever thread owns the
dispatcher object (normally the GUI thread), so listeners never run on a
decode thread.
"""

from __future__ import annotations

from collections.abc import Callable

from PySide6.QtCore import QObject, Qt, Signal

from photo_editor.logger import get_logger

_logger = get_logger("notifier")


class QtDispatcher(QObject):
    """Queue callbacks onto the thread this object lives in.

    Instances are callable, so they can be passed straight to ImageLoader
    as ``dispatch``.
    """

    _posted = Signal(object)  # zero-arg callable

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        # Always queued, even from the owning thread: listeners only ever see
        # completed mutations.
        self._posted.connect(self._run, Qt.ConnectionType.QueuedConnection)

    def __call__(self, fn: Callable[[], None]) -> None:
        self._posted.emit(fn)

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            _logger.exception("dispatched callback failed")

"""Explicit progress context threaded through long-running operations."""

import logging
import threading
from typing import Callable, Optional

from tqdm import tqdm

from .errors import ReproCancelledError

logger = logging.getLogger("repro_pipeline")

# callback(title, info, fraction); fraction is None when the display should clear.
ProgressCallback = Callable[[str, str, Optional[float]], None]


class ProgressContext:
    """Advisory progress reporting plus cooperative cancellation.

    ``stage()`` narrows the fraction range used by subsequent ``report()``
    calls, so nested steps publish a monotonic overall fraction. Use as a
    context manager so the terminal bar and any host display are cleared
    on every exit path.
    """

    def __init__(
        self,
        title: str,
        callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        show_bar: bool = False,
    ):
        self.title = title
        self._callback = callback
        self._cancel_event = cancel_event or threading.Event()
        self._show_bar = show_bar
        self._bar = None
        self._info_prefix = ""
        self._start = 0.0
        self._end = 1.0
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def stage(self, info_prefix: str, start: float = 0.0, end: float = 1.0):
        """Begin a sub-step covering ``[start, end]`` of the overall range."""
        self._info_prefix = info_prefix
        self._start = float(start)
        self._end = float(end)
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        self._publish(info_prefix, self._start)

    def report(self, info: str, done: int, total: int):
        """Publish per-item progress inside the current stage."""
        total_i = max(int(total), 1)
        fraction = self._start + (self._end - self._start) * (int(done) / total_i)
        if self._show_bar:
            if self._bar is None or self._bar.total != total_i:
                if self._bar is not None:
                    self._bar.close()
                self._bar = tqdm(total=total_i, desc=self._info_prefix or self.title)
            self._bar.n = int(done)
            self._bar.refresh()
        self._publish(self._info_prefix + info, fraction)

    def check_cancelled(self):
        """Raise ReproCancelledError when cancellation has been requested."""
        if self._cancel_event.is_set():
            raise ReproCancelledError(f"{self.title} cancelled by user request")

    def request_cancel(self):
        self._cancel_event.set()

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        self._publish("", None)

    def _publish(self, info: str, fraction: Optional[float]):
        logger.debug("[progress] %s: %s (%s)", self.title, info, fraction)
        if self._callback is None:
            return
        try:
            self._callback(self.title, info, fraction)
        except Exception:
            logger.debug("Progress callback failed.", exc_info=True)

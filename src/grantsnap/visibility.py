"""Tab visibility tracking.

Feeds window/document visibility events into a small observable so that
readers (see :class:`grantsnap.smart_auth.SmartAuth`) can revalidate state
when the tab comes back to the foreground.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from grantsnap._clock import Clock, now_ms

_logger = logging.getLogger(__name__)

VisibilityListener = Callable[[bool], None]


class TabVisibility:
    def __init__(self, *, visible: bool = True, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._visible = visible
        self._last_active_time = clock()
        self._listeners: set[VisibilityListener] = set()

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def is_hidden(self) -> bool:
        return not self._visible

    @property
    def last_active_time(self) -> int:
        """Epoch milliseconds of the last time the tab became visible or focused."""
        return self._last_active_time

    def subscribe(self, listener: VisibilityListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    def handle_visibility_change(self, hidden: bool) -> None:
        """Apply a ``visibilitychange`` event."""
        visible = not hidden
        if visible:
            self._last_active_time = self._clock()
            _logger.debug("Tab became visible")
        else:
            _logger.debug("Tab became hidden")
        self._set_visible(visible)

    def handle_focus(self) -> None:
        self._last_active_time = self._clock()
        self._set_visible(True)

    def handle_blur(self) -> None:
        # Blur fires for focus moves inside the page too; wait for visibilitychange.
        return

    def _set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        for listener in list(self._listeners):
            try:
                listener(visible)
            except Exception:
                _logger.warning("Visibility listener failed", exc_info=True)

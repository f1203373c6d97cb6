"""ideaboard/services/connection_state.py

Tracks whether the item store is reachable and whether the open canvas has
changes that are not yet persisted. UI status banners subscribe to it; the
canvas state engine is the only writer.
"""

from typing import Callable, List
import logging

from ideaboard.utils.listeners import notify, subscribe

log = logging.getLogger(__name__)

StateListener = Callable[[bool], None]


class ConnectionState:
    """Two independent observable flags with change-only notification."""

    def __init__(self, is_online: bool = True, has_unsaved_changes: bool = False) -> None:
        self._is_online = is_online
        self._has_unsaved_changes = has_unsaved_changes
        self._connection_listeners: List[StateListener] = []
        self._unsaved_listeners: List[StateListener] = []

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def has_unsaved_changes(self) -> bool:
        return self._has_unsaved_changes

    def set_connection_state(self, is_online: bool) -> None:
        if self._is_online == is_online:
            return
        self._is_online = is_online
        log.info("Item store connection is now %s", "online" if is_online else "offline")
        notify(self._connection_listeners, is_online)

    def set_has_unsaved_changes(self, has_unsaved_changes: bool) -> None:
        if self._has_unsaved_changes == has_unsaved_changes:
            return
        self._has_unsaved_changes = has_unsaved_changes
        notify(self._unsaved_listeners, has_unsaved_changes)

    def on_connection_changed(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        return subscribe(self._connection_listeners, listener)

    def on_unsaved_changes_changed(self, listener: StateListener) -> Callable[[], None]:
        return subscribe(self._unsaved_listeners, listener)

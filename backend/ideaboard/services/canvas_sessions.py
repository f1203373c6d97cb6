"""ideaboard/services/canvas_sessions.py

Keeps one :class:`CanvasState` per open-canvas session (browser tab, websocket
connection, ...). Engines never share working sets, so two sessions editing
the same board each hold their own copy and meet only at the item store.
"""

from typing import Callable, Dict, Hashable, Iterator, Optional
import logging

from ideaboard.services.canvas_state import CanvasState

log = logging.getLogger(__name__)

EngineFactory = Callable[[], CanvasState]


class CanvasSessions:
    """Registry of canvas engines keyed by session id."""

    def __init__(self, factory: EngineFactory) -> None:
        self._factory = factory
        self._engines: Dict[Hashable, CanvasState] = {}

    def __len__(self) -> int:
        return len(self._engines)

    def __contains__(self, session_id: Hashable) -> bool:
        return session_id in self._engines

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._engines))

    def get(self, session_id: Hashable) -> Optional[CanvasState]:
        return self._engines.get(session_id)

    def get_or_create(self, session_id: Hashable) -> CanvasState:
        """Return the engine for *session_id*, creating one if needed."""
        engine = self._engines.get(session_id)
        if engine is None:
            engine = self._factory()
            self._engines[session_id] = engine
            log.debug("Created canvas engine for session %s", session_id)
        return engine

    async def close(self, session_id: Hashable, flush: bool = True) -> bool:
        """Forget the engine of *session_id*, saving its pending changes first if *flush*.

        Returns False if no engine was registered for the session.
        """
        engine = self._engines.pop(session_id, None)
        if engine is None:
            return False

        if flush and engine.unsaved_changes_count:
            saved = await engine.save_now()
            if not saved:
                log.warning(
                    "Session %s closed with %d unsaved item(s)", session_id, engine.unsaved_changes_count
                )
        await engine.close()
        log.debug("Closed canvas engine for session %s", session_id)
        return True

    async def close_all(self, flush: bool = True) -> None:
        for session_id in list(self._engines):
            await self.close(session_id, flush=flush)

"""ideaboard/services/canvas_state.py

Authoritative in-memory state of one open canvas, with optimistic updates and
a debounced, batched, retrying auto-save.

Every mutating call updates the working set immediately, marks the touched
item dirty and restarts a single debounce timer. When the timer fires, all
dirty items are sent to the item store in one batch upsert. Transient
transport failures are retried with exponential backoff; every other failure
stops the save. Save and delete failures never propagate to the caller: they
are logged and surface only through :class:`ConnectionState`.

The engine expects to be driven from a single asyncio event loop (UI/pointer
callbacks interleaved with timer callbacks). It is not thread-safe.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine, Dict, Iterable, List, Optional, Set
from uuid import UUID

import structlog

from ideaboard import metrics
from ideaboard.core_models import BoardItem, BoardItemRecord, ItemPosition, ItemSize, utc_now
from ideaboard.errors import CanvasSyncError, LoadFailure, is_retryable
from ideaboard.services.connection_state import ConnectionState
from ideaboard.services.entity_mapper import DataEntityMapper
from ideaboard.services.item_gateway import ItemGateway
from ideaboard.utils.listeners import notify, subscribe

if TYPE_CHECKING:
    from ideaboard.config import CanvasSettings

log = structlog.get_logger(__name__)

DEFAULT_AUTO_SAVE_DEBOUNCE_MS = 1000
DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 1000

ItemsListener = Callable[[], None]
SelectionListener = Callable[[List[UUID]], None]


class CanvasState:
    """Source of truth for the items of the currently open board."""

    def __init__(
        self,
        gateway: ItemGateway,
        connection_state: Optional[ConnectionState] = None,
        mapper: Optional[DataEntityMapper] = None,
        *,
        auto_save_debounce_ms: int = DEFAULT_AUTO_SAVE_DEBOUNCE_MS,
        max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if auto_save_debounce_ms < 0 or max_retry_attempts < 0 or retry_delay_ms < 0:
            raise ValueError("Auto-save tunables must not be negative")

        self._gateway = gateway
        self._connection = connection_state or ConnectionState()
        self._mapper = mapper or DataEntityMapper()
        self._debounce_s = auto_save_debounce_ms / 1000
        self._max_retry_attempts = max_retry_attempts
        self._retry_delay_s = retry_delay_ms / 1000
        self._sleep = sleep

        self._board_id: Optional[UUID] = None
        self._items: List[BoardItem] = []
        self._dirty_ids: Set[UUID] = set()
        # Stamped from one engine-wide sequence on every local mutation; lets a
        # finished save tell whether an item changed again while its request was
        # in flight. Never reset, so values stay unique across reloads.
        self._revisions: Dict[UUID, int] = {}
        self._revision_seq = 0
        self._selected_ids: List[UUID] = []
        self._retry_count = 0

        self._auto_save_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

        self._items_listeners: List[ItemsListener] = []
        self._selection_listeners: List[SelectionListener] = []

    @classmethod
    def from_settings(
        cls,
        settings: "CanvasSettings",
        gateway: ItemGateway,
        connection_state: Optional[ConnectionState] = None,
        **kwargs: Any,
    ) -> "CanvasState":
        return cls(
            gateway,
            connection_state,
            auto_save_debounce_ms=settings.auto_save_debounce_ms,
            max_retry_attempts=settings.max_retry_attempts,
            retry_delay_ms=settings.retry_delay_ms,
            **kwargs,
        )

    # --------------------------------------------------------------------- #
    #  Read-only accessors
    # --------------------------------------------------------------------- #

    @property
    def board_id(self) -> Optional[UUID]:
        return self._board_id

    @property
    def items(self) -> tuple[BoardItem, ...]:
        return tuple(self._items)

    @property
    def selected_item_ids(self) -> List[UUID]:
        return list(self._selected_ids)

    @property
    def dirty_item_ids(self) -> frozenset[UUID]:
        return frozenset(self._dirty_ids)

    @property
    def unsaved_changes_count(self) -> int:
        return len(self._dirty_ids)

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection

    @property
    def retry_count(self) -> int:
        """Retries used by the most recent save."""
        return self._retry_count

    @property
    def auto_save_pending(self) -> bool:
        return self._auto_save_task is not None and not self._auto_save_task.done()

    def get_item(self, item_id: UUID) -> Optional[BoardItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    # --------------------------------------------------------------------- #
    #  Notifications
    # --------------------------------------------------------------------- #

    def on_items_changed(self, listener: ItemsListener) -> Callable[[], None]:
        """Called without arguments whenever the working set changes; re-read :attr:`items`."""
        return subscribe(self._items_listeners, listener)

    def on_selection_changed(self, listener: SelectionListener) -> Callable[[], None]:
        """Called with the new selection (a list of item ids)."""
        return subscribe(self._selection_listeners, listener)

    def _emit_items_changed(self) -> None:
        notify(self._items_listeners)

    def _emit_selection_changed(self) -> None:
        notify(self._selection_listeners, list(self._selected_ids))

    # --------------------------------------------------------------------- #
    #  Loading
    # --------------------------------------------------------------------- #

    async def load_items(self, board_id: UUID) -> None:
        """Replace the working set with the items stored for *board_id*.

        Raises :class:`LoadFailure` if the item store call fails; the engine
        does not retry loads on its own.
        """
        self._board_id = board_id
        self._cancel_auto_save()

        try:
            records = await self._gateway.fetch_by_board(board_id)
        except Exception as exc:
            log.error("Failed to load items", board_id=str(board_id), error=str(exc))
            self._connection.set_connection_state(False)
            raise LoadFailure(f"Failed to load items for board {board_id}: {exc}") from exc

        had_selection = bool(self._selected_ids)
        self._items = self._mapper.map_to_board_items(records)
        self._dirty_ids.clear()
        self._revisions.clear()
        self._selected_ids = []

        self._connection.set_connection_state(True)
        self._connection.set_has_unsaved_changes(False)
        log.info("Items loaded", board_id=str(board_id), count=len(self._items))

        self._emit_items_changed()
        if had_selection:
            self._emit_selection_changed()

    # --------------------------------------------------------------------- #
    #  Optimistic mutations
    # --------------------------------------------------------------------- #

    def add_item(self, item: BoardItem) -> None:
        """Append *item* to the working set and schedule it for saving."""
        if self.get_item(item.id) is not None:
            raise ValueError(f"Item {item.id} is already on the canvas")

        self._items.append(item)
        self._mark_dirty(item.id)

        self._emit_items_changed()
        self._trigger_auto_save()

    def update_item_position(self, item_id: UUID, x: float, y: float) -> bool:
        def _apply(item: BoardItem) -> None:
            item.position = ItemPosition(x=x, y=y, z_index=item.position.z_index)

        return self._mutate(item_id, _apply)

    def update_item_size(self, item_id: UUID, width: float, height: float) -> bool:
        def _apply(item: BoardItem) -> None:
            item.size = ItemSize(width=width, height=height)

        return self._mutate(item_id, _apply)

    def update_item_size_and_position(
        self, item_id: UUID, width: float, height: float, x: float, y: float
    ) -> bool:
        """Resize from a corner other than bottom-right moves the item too; apply both at once."""
        def _apply(item: BoardItem) -> None:
            item.size = ItemSize(width=width, height=height)
            item.position = ItemPosition(x=x, y=y, z_index=item.position.z_index)

        return self._mutate(item_id, _apply)

    def update_item_content(self, item_id: UUID, content: Dict[str, Any]) -> bool:
        def _apply(item: BoardItem) -> None:
            item.content = dict(content)

        return self._mutate(item_id, _apply)

    def _mutate(self, item_id: UUID, apply: Callable[[BoardItem], None]) -> bool:
        item = self.get_item(item_id)
        if item is None:
            log.debug("Ignoring update for unknown item", item_id=str(item_id))
            return False

        apply(item)
        item.updated_at = utc_now()  # provisional until the server answers
        self._mark_dirty(item.id)

        self._emit_items_changed()
        self._trigger_auto_save()
        return True

    def _mark_dirty(self, item_id: UUID) -> None:
        self._dirty_ids.add(item_id)
        self._revision_seq += 1
        self._revisions[item_id] = self._revision_seq

    # --------------------------------------------------------------------- #
    #  Removal and selection
    # --------------------------------------------------------------------- #

    def remove_item(self, item_id: UUID) -> None:
        """Remove an item locally at once and delete it remotely in the background.

        The removal is final from the caller's point of view: a failed remote
        delete is logged and reported as offline but never re-adds the item.
        """
        index = next((i for i, item in enumerate(self._items) if item.id == item_id), None)
        if index is None:
            return

        del self._items[index]
        self._dirty_ids.discard(item_id)
        self._revisions.pop(item_id, None)
        if item_id in self._selected_ids:
            self._selected_ids = [sid for sid in self._selected_ids if sid != item_id]
        self._connection.set_has_unsaved_changes(bool(self._dirty_ids))

        self._emit_items_changed()
        self._emit_selection_changed()

        # Deletes are immediate, never batched
        self._spawn(self._delete_item(item_id))

    def update_selection(self, selected_ids: Iterable[UUID]) -> None:
        """Replace the selection. Ids not on the canvas are dropped."""
        present = {item.id for item in self._items}
        selection: List[UUID] = []
        for item_id in selected_ids:
            if item_id in present and item_id not in selection:
                selection.append(item_id)
        self._selected_ids = selection
        self._emit_selection_changed()

    def delete_selected_items(self) -> None:
        # Snapshot: every removal rewrites the selection
        for item_id in list(self._selected_ids):
            self.remove_item(item_id)

    async def _delete_item(self, item_id: UUID) -> None:
        # Waits for an in-flight save so a late upsert cannot resurrect the row
        async with self._save_lock:
            try:
                deleted = await self._gateway.delete_by_id(item_id)
            except Exception as exc:
                metrics.DELETES.labels(outcome="error").inc()
                log.error(
                    "Failed to delete item",
                    item_id=str(item_id),
                    error=str(exc),
                    exc_info=not isinstance(exc, CanvasSyncError),
                )
                self._connection.set_connection_state(False)
                return

        if deleted:
            metrics.DELETES.labels(outcome="deleted").inc()
        else:
            metrics.DELETES.labels(outcome="missing").inc()
            log.debug("Delete matched no stored item", item_id=str(item_id))
        self._connection.set_connection_state(True)

    # --------------------------------------------------------------------- #
    #  Auto-save pipeline
    # --------------------------------------------------------------------- #

    def _trigger_auto_save(self) -> None:
        """(Re)start the debounce timer; only the last trigger of a burst saves."""
        self._connection.set_has_unsaved_changes(bool(self._dirty_ids))
        self._cancel_auto_save()
        self._auto_save_task = asyncio.get_running_loop().create_task(self._auto_save_after_debounce())

    def _cancel_auto_save(self) -> None:
        task, self._auto_save_task = self._auto_save_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _auto_save_after_debounce(self) -> None:
        await asyncio.sleep(self._debounce_s)
        # From here on the save is no longer owned by the timer, so a new
        # mutation restarting the timer cannot cancel a request in flight.
        self._auto_save_task = None
        self._spawn(self.batch_save())

    async def save_now(self) -> bool:
        """Cancel the pending timer and save immediately."""
        self._cancel_auto_save()
        return await self.batch_save()

    async def batch_save(self) -> bool:
        """Persist every dirty item in one batch upsert.

        Returns True if there was nothing to save or the save succeeded and
        False if it was abandoned. Never raises for item store failures.
        Concurrent calls are serialized; a later call saves whatever is still
        dirty once the earlier one has finished.
        """
        async with self._save_lock:
            return await self._run_batch_save()

    async def _run_batch_save(self) -> bool:
        if not self._dirty_ids:
            return True

        pending = [item for item in self._items if item.id in self._dirty_ids]
        board_id = str(self._board_id) if self._board_id else None
        total_attempts = self._max_retry_attempts + 1

        for attempt in range(1, total_attempts + 1):
            self._retry_count = attempt - 1
            # Items removed while we were backing off must not be re-created
            pending = [item for item in pending if self.get_item(item.id) is item]
            if not pending:
                return True

            revisions = {item.id: self._revisions.get(item.id) for item in pending}
            try:
                records = self._mapper.map_to_records(pending)
                with metrics.SAVE_LATENCY.time():
                    saved = await self._gateway.batch_upsert(records)
            except Exception as exc:
                if is_retryable(exc) and attempt < total_attempts:
                    delay = self._retry_delay_s * 2 ** (attempt - 1)
                    metrics.SAVE_ATTEMPTS.labels(outcome="retryable_error").inc()
                    log.warning(
                        "Auto-save attempt failed, retrying",
                        board_id=board_id,
                        attempt=attempt,
                        max_attempts=total_attempts,
                        delay_s=delay,
                        error=str(exc),
                    )
                    await self._sleep(delay)
                    continue

                if is_retryable(exc):
                    metrics.SAVE_ATTEMPTS.labels(outcome="retryable_error").inc()
                    log.error("Auto-save gave up after retries", board_id=board_id, attempts=attempt, error=str(exc))
                else:
                    metrics.SAVE_ATTEMPTS.labels(outcome="fatal_error").inc()
                    log.error(
                        "Auto-save failed",
                        board_id=board_id,
                        attempt=attempt,
                        error=str(exc),
                        exc_info=not isinstance(exc, CanvasSyncError),
                    )
                # Dirty items stay dirty; the next mutation or save_now retries them
                self._connection.set_connection_state(False)
                return False

            self._reconcile(saved)
            for item_id, revision in revisions.items():
                if self._revisions.get(item_id) == revision:
                    self._dirty_ids.discard(item_id)

            metrics.SAVE_ATTEMPTS.labels(outcome="success").inc()
            metrics.SAVED_ITEMS.inc(len(records))
            log.info("Auto-save succeeded", board_id=board_id, count=len(records), attempt=attempt)

            self._connection.set_connection_state(True)
            self._connection.set_has_unsaved_changes(bool(self._dirty_ids))
            return True

        return False  # pragma: no cover - the loop always returns

    def _reconcile(self, saved: List[BoardItemRecord]) -> None:
        """Copy server timestamps onto the working set (last write wins)."""
        by_id = {item.id: item for item in self._items}
        for record in saved:
            try:
                item_id = UUID(str(record.id))
            except ValueError:
                log.warning("Server returned a record with an unusable id", record_id=record.id)
                continue
            item = by_id.get(item_id)
            if item is None:
                continue
            if record.updated_at is not None:
                item.updated_at = record.updated_at
            if record.created_at is not None:
                item.created_at = record.created_at

    # --------------------------------------------------------------------- #
    #  Background task bookkeeping
    # --------------------------------------------------------------------- #

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until background saves and deletes that already started have finished."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop the debounce timer and wait for in-flight requests. Pending changes are not saved."""
        self._cancel_auto_save()
        await self.drain()

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import UUID, uuid4

import pytest

from ideaboard.core_models import BoardItem, BoardItemRecord, ItemPosition, ItemSize
from ideaboard.services.canvas_state import CanvasState
from ideaboard.services.connection_state import ConnectionState
from ideaboard.services.entity_mapper import DataEntityMapper

SERVER_TIME = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
DEBOUNCE_MS = 20


# --- Dummy item store ------------------------------------------------------ #


class DummyGateway:
    """In-memory imitation of the board_items REST gateway."""

    def __init__(self):
        self.rows: dict[str, BoardItemRecord] = {}
        self.fetch_calls: List[UUID] = []
        self.upsert_calls: List[List[BoardItemRecord]] = []
        self.delete_calls: List[UUID] = []
        # Exceptions raised by successive batch_upsert calls, in order
        self.upsert_failures: List[Exception] = []
        self.fetch_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        # When set, batch_upsert blocks until the event is set
        self.upsert_gate: Optional[asyncio.Event] = None
        self.upsert_started = asyncio.Event()

    async def fetch_by_board(self, board_id: UUID) -> List[BoardItemRecord]:
        self.fetch_calls.append(board_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        return [r for r in self.rows.values() if r.board_id == str(board_id)]

    async def batch_upsert(self, records) -> List[BoardItemRecord]:
        self.upsert_calls.append(list(records))
        self.upsert_started.set()
        if self.upsert_gate is not None:
            await self.upsert_gate.wait()
        if self.upsert_failures:
            raise self.upsert_failures.pop(0)

        saved = []
        for record in records:
            existing = self.rows.get(record.id)
            stored = record.model_copy(
                update={
                    "created_at": existing.created_at if existing else SERVER_TIME,
                    "updated_at": SERVER_TIME,
                }
            )
            self.rows[record.id] = stored
            saved.append(stored)
        return saved

    async def delete_by_id(self, item_id: UUID) -> bool:
        self.delete_calls.append(item_id)
        if self.delete_error is not None:
            raise self.delete_error
        return self.rows.pop(str(item_id), None) is not None

    def seed(self, *items: BoardItem) -> None:
        mapper = DataEntityMapper()
        for item in items:
            record = mapper.map_to_record(item)
            self.rows[record.id] = record


# --- Fixtures --------------------------------------------------------------- #


@pytest.fixture
def board_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_item(board_id, user_id) -> Callable[..., BoardItem]:
    def _make(x: float = 0.0, y: float = 0.0, item_type: str = "note", **kwargs) -> BoardItem:
        return BoardItem(
            board_id=board_id,
            user_id=user_id,
            item_type=item_type,
            position=ItemPosition(x=x, y=y),
            size=ItemSize(width=200, height=150),
            content=kwargs.pop("content", {"text": "hello"}),
            created_at=kwargs.pop("created_at", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            updated_at=kwargs.pop("updated_at", datetime(2024, 1, 1, tzinfo=timezone.utc)),
            **kwargs,
        )

    return _make


@pytest.fixture
def gateway() -> DummyGateway:
    return DummyGateway()


@pytest.fixture
def connection() -> ConnectionState:
    return ConnectionState()


@pytest.fixture
def sleeps() -> List[float]:
    """Backoff delays requested by the engine."""
    return []


@pytest.fixture
def engine(gateway, connection, sleeps) -> CanvasState:
    async def _record_sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)

    return CanvasState(
        gateway,
        connection,
        auto_save_debounce_ms=DEBOUNCE_MS,
        max_retry_attempts=3,
        retry_delay_ms=1000,
        sleep=_record_sleep,
    )


@pytest.fixture
def settle(engine):
    """Let the debounce timer fire and wait for the save (and deletes) it started."""

    async def _settle() -> None:
        while engine.auto_save_pending:
            await asyncio.sleep(0.005)
        await engine.drain()

    return _settle

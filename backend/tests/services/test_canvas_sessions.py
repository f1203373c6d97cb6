import pytest

from ideaboard.errors import Forbidden
from ideaboard.services.canvas_sessions import CanvasSessions
from ideaboard.services.canvas_state import CanvasState


@pytest.fixture
def sessions(gateway) -> CanvasSessions:
    async def _no_sleep(_delay):
        return None

    return CanvasSessions(lambda: CanvasState(gateway, auto_save_debounce_ms=10_000, sleep=_no_sleep))


def test_get_or_create_reuses_engine(sessions):
    first = sessions.get_or_create("tab-1")

    assert sessions.get_or_create("tab-1") is first
    assert sessions.get_or_create("tab-2") is not first
    assert len(sessions) == 2
    assert "tab-1" in sessions
    assert sorted(sessions) == ["tab-1", "tab-2"]
    assert sessions.get("tab-3") is None


@pytest.mark.asyncio
async def test_close_flushes_pending_changes(sessions, gateway, make_item):
    engine = sessions.get_or_create("tab-1")
    item = make_item()
    engine.add_item(item)

    assert await sessions.close("tab-1") is True

    assert "tab-1" not in sessions
    assert len(gateway.upsert_calls) == 1
    assert str(item.id) in gateway.rows
    assert not engine.auto_save_pending


@pytest.mark.asyncio
async def test_close_without_flush_drops_changes(sessions, gateway, make_item):
    sessions.get_or_create("tab-1").add_item(make_item())

    await sessions.close("tab-1", flush=False)

    assert gateway.upsert_calls == []


@pytest.mark.asyncio
async def test_close_unknown_session(sessions):
    assert await sessions.close("nope") is False


@pytest.mark.asyncio
async def test_close_survives_failed_flush(sessions, gateway, make_item):
    engine = sessions.get_or_create("tab-1")
    engine.add_item(make_item())
    gateway.upsert_failures = [Forbidden("rls")]

    assert await sessions.close("tab-1") is True
    assert engine.unsaved_changes_count == 1
    assert engine.connection_state.is_online is False


@pytest.mark.asyncio
async def test_close_all(sessions, gateway, make_item):
    for session_id in ("a", "b"):
        sessions.get_or_create(session_id).add_item(make_item())

    await sessions.close_all()

    assert len(sessions) == 0
    assert len(gateway.upsert_calls) == 2

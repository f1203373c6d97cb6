import pytest

from ideaboard.config import CanvasSettings, load_settings
from ideaboard.errors import ConfigurationError
from ideaboard.services.canvas_state import CanvasState

BASE_ENV = {"SUPABASE_URL": "https://example.supabase.co", "SUPABASE_ANON_KEY": "anon-key"}


def test_defaults():
    settings = load_settings(BASE_ENV)

    assert settings.items_table == "board_items"
    assert settings.auto_save_debounce_ms == 1000
    assert settings.max_retry_attempts == 3
    assert settings.retry_delay_ms == 1000
    assert settings.request_timeout_s == 30.0


def test_overrides_from_env():
    env = dict(
        BASE_ENV,
        CANVAS_AUTO_SAVE_DEBOUNCE_MS="250",
        CANVAS_MAX_RETRY_ATTEMPTS="5",
        CANVAS_RETRY_DELAY_MS="",
        CANVAS_ITEMS_TABLE="items_v2",
    )

    settings = load_settings(env)

    assert settings.auto_save_debounce_ms == 250
    assert settings.max_retry_attempts == 5
    assert settings.retry_delay_ms == 1000
    assert settings.items_table == "items_v2"


@pytest.mark.parametrize("missing", ["SUPABASE_URL", "SUPABASE_ANON_KEY"])
def test_missing_credentials(missing):
    env = {k: v for k, v in BASE_ENV.items() if k != missing}
    with pytest.raises(ConfigurationError):
        load_settings(env)


@pytest.mark.parametrize("name, value", [("CANVAS_MAX_RETRY_ATTEMPTS", "-1"), ("CANVAS_RETRY_DELAY_MS", "soon")])
def test_invalid_values(name, value):
    with pytest.raises(ConfigurationError) as exc_info:
        load_settings(dict(BASE_ENV, **{name: value}))
    assert exc_info.value.__cause__ is not None


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "env-key")
    monkeypatch.setenv("CANVAS_AUTO_SAVE_DEBOUNCE_MS", "40")

    settings = load_settings()

    assert settings.supabase_url == "https://env.supabase.co"
    assert settings.auto_save_debounce_ms == 40


def test_engine_from_settings(gateway):
    settings = CanvasSettings(supabase_url="u", supabase_anon_key="k", auto_save_debounce_ms=0, max_retry_attempts=1)
    engine = CanvasState.from_settings(settings, gateway)

    assert engine.connection_state.is_online
    assert engine.unsaved_changes_count == 0

# ideaboard/config.py
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from ideaboard.errors import ConfigurationError

# --- Environment variable names ---
ENV_SUPABASE_URL = "SUPABASE_URL"
ENV_SUPABASE_ANON_KEY = "SUPABASE_ANON_KEY"

_OPTIONAL_ENV = {
    "items_table": "CANVAS_ITEMS_TABLE",
    "request_timeout_s": "CANVAS_REQUEST_TIMEOUT_S",
    "auto_save_debounce_ms": "CANVAS_AUTO_SAVE_DEBOUNCE_MS",
    "max_retry_attempts": "CANVAS_MAX_RETRY_ATTEMPTS",
    "retry_delay_ms": "CANVAS_RETRY_DELAY_MS",
}


class CanvasSettings(BaseModel):
    """Connection details for the item store plus the auto-save tunables."""
    supabase_url: str
    supabase_anon_key: str
    items_table: str = "board_items"
    request_timeout_s: float = Field(30.0, gt=0)
    auto_save_debounce_ms: int = Field(1000, ge=0, description="Quiet period before dirty items are saved")
    max_retry_attempts: int = Field(3, ge=0, description="Retries after the first failed save attempt")
    retry_delay_ms: int = Field(1000, ge=0, description="Base delay, doubled on every retry")


def load_settings(env: Optional[Mapping[str, str]] = None) -> CanvasSettings:
    """Build settings from the process environment (after loading ``.env``) or from *env*."""
    if env is None:
        load_dotenv()
        env = os.environ

    url = env.get(ENV_SUPABASE_URL)
    anon_key = env.get(ENV_SUPABASE_ANON_KEY)
    if not url or not anon_key:
        raise ConfigurationError(
            f"Item store is not configured. Set {ENV_SUPABASE_URL} and {ENV_SUPABASE_ANON_KEY}."
        )

    values = {"supabase_url": url, "supabase_anon_key": anon_key}
    for field_name, env_name in _OPTIONAL_ENV.items():
        raw = env.get(env_name)
        if raw not in (None, ""):
            values[field_name] = raw

    try:
        return CanvasSettings.model_validate(values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid canvas settings: {exc}") from exc

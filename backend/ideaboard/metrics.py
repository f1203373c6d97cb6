from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Auto-save pipeline
SAVE_ATTEMPTS = Counter(
    "ideaboard_save_attempts_total",
    "Batch upsert attempts made by the auto-save pipeline",
    ["outcome"],  # success | retryable_error | fatal_error
)

SAVED_ITEMS = Counter(
    "ideaboard_saved_items_total",
    "Items confirmed persisted by a successful batch upsert",
)

SAVE_LATENCY = Histogram(
    "ideaboard_save_latency_seconds",
    "Duration of a single batch upsert request",
)

DELETES = Counter(
    "ideaboard_deletes_total",
    "Immediate (unbatched) item deletes",
    ["outcome"],  # deleted | missing | error
)


def render_metrics() -> tuple[bytes, str]:
    """Return the Prometheus exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST

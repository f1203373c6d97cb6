import logging
from typing import Any, Callable, List

log = logging.getLogger(__name__)


def subscribe(listeners: List[Callable[..., Any]], listener: Callable[..., Any]) -> Callable[[], None]:
    """Append *listener* and return a callable that removes it again."""
    listeners.append(listener)

    def _unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return _unsubscribe


def notify(listeners: List[Callable[..., Any]], *args: Any) -> None:
    """Call every listener with *args*. A failing listener is logged and skipped."""
    # Copy: a listener may unsubscribe itself while being notified
    for listener in list(listeners):
        try:
            listener(*args)
        except Exception as exc:
            log.error("Listener %r raised: %s", listener, exc, exc_info=True)

from typing import Callable

from .logs import json_log

PAYMENT_STATUS_CHANGED = "payment.status_changed"
ORDER_COMPLETED = "order.completed"

Subscriber = Callable[[str, dict], None]


class Notifier:
    """
    Fire-and-forget signals for the UI layer.

    Subscribers are called synchronously in registration order; a failing
    subscriber is logged and skipped so the engine never waits on, or breaks
    because of, a listener.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        self._subscribers.append(fn)

        def _unsubscribe():
            if fn in self._subscribers:
                self._subscribers.remove(fn)

        return _unsubscribe

    def emit(self, event: str, **payload) -> None:
        for fn in list(self._subscribers):
            try:
                fn(event, payload)
            except Exception as exc:
                json_log("warning", "notification.subscriber_failed", notification=event, error=str(exc))

from threading import Lock
from typing import Any, Callable, Protocol

OrderUpdateListener = Callable[[dict[str, Any]], None]


class OrderUpdatePublisher(Protocol):
    def publish_order_update(self, payload: dict[str, Any]) -> None: ...


class InMemoryOrderUpdateBroker:
    """Fan-out of order updates to in-process subscribers (socket gateways, SSE streams)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._listeners: list[OrderUpdateListener] = []

    def subscribe(self, listener: OrderUpdateListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: OrderUpdateListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def reset(self) -> None:
        with self._lock:
            self._listeners.clear()

    def publish_order_update(self, payload: dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(payload)


order_update_broker = InMemoryOrderUpdateBroker()


def get_order_update_publisher() -> OrderUpdatePublisher:
    return order_update_broker

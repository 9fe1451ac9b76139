# Overview: In-process publish/subscribe hub for sale status changes.

"""
Sale status push.

The PDV checkout screen waits for a PIX or card sale to be confirmed by the
gateway webhook. Each waiting client subscribes to one sale id; the sale
service publishes after every committed status change. The hub lives in the
process, so it only reaches clients connected to the same worker.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Callable


Callback = Callable[[dict], None]

_lock = threading.Lock()
_subscribers: dict[int, list["Subscription"]] = defaultdict(list)


class Subscription:
    """Handle returned by subscribe(); close() is idempotent."""

    def __init__(self, sale_id: int, callback: Callback):
        self.sale_id = sale_id
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        with _lock:
            if self.closed:
                return
            self.closed = True
            live = _subscribers.get(self.sale_id)
            if live is not None:
                if self in live:
                    live.remove(self)
                if not live:
                    del _subscribers[self.sale_id]

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def subscribe(sale_id: int, callback: Callback) -> Subscription:
    subscription = Subscription(sale_id, callback)
    with _lock:
        _subscribers[sale_id].append(subscription)
    return subscription


def publish(sale_id: int, payload: dict) -> int:
    """
    Deliver payload to every live subscriber of a sale.

    Callbacks run outside the lock so they may close their own subscription.
    Returns the number of callbacks invoked.
    """
    with _lock:
        targets = list(_subscribers.get(sale_id, ()))
    for subscription in targets:
        subscription.callback(payload)
    return len(targets)


def subscriber_count(sale_id: int) -> int:
    with _lock:
        return len(_subscribers.get(sale_id, ()))


def clear() -> None:
    with _lock:
        _subscribers.clear()

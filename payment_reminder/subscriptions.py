"""
Payment Reminder -- Change subscriptions

A ``ChangeFeed`` pushes the FULL current result set of one owner's
collection to every subscriber: once on subscribe, then after each
mutation.  There is no diffing.  Subscriptions stay open until closed;
re-subscribing starts a fresh one with a fresh snapshot.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SnapshotCallback = Callable[[list], None]


class Subscription(Generic[T]):
    """Handle returned by ``ChangeFeed.subscribe``."""

    def __init__(self, feed: ChangeFeed, owner_id: str, callback: Callable[[list[T]], None]):
        self._feed = feed
        self.owner_id = owner_id
        self.callback = callback
        self.active = True
        self.deliveries = 0

    def close(self) -> None:
        """Stop receiving snapshots.  Safe to call twice."""
        if self.active:
            self.active = False
            self._feed._remove(self)

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeFeed(Generic[T]):
    """Per-collection publisher of full owner snapshots."""

    def __init__(self, name: str, snapshot: Callable[[str], list[T]]):
        self.name = name
        self._snapshot = snapshot
        self._subscriptions: list[Subscription[T]] = []

    def subscribe(self, owner_id: str, callback: Callable[[list[T]], None]) -> Subscription[T]:
        subscription: Subscription[T] = Subscription(self, owner_id, callback)
        self._subscriptions.append(subscription)
        logger.debug("New %s subscription for owner %s", self.name, owner_id)
        self._deliver(subscription, self._snapshot(owner_id))
        return subscription

    def publish(self, owner_id: str) -> None:
        """Push the current snapshot to every open subscription of ``owner_id``."""
        targets = [s for s in self._subscriptions if s.active and s.owner_id == owner_id]
        if not targets:
            return
        snapshot = self._snapshot(owner_id)
        for subscription in targets:
            self._deliver(subscription, list(snapshot))

    def subscriber_count(self, owner_id: str | None = None) -> int:
        return sum(1 for s in self._subscriptions
                   if s.active and (owner_id is None or s.owner_id == owner_id))

    def _deliver(self, subscription: Subscription[T], snapshot: list[T]) -> None:
        try:
            subscription.callback(snapshot)
            subscription.deliveries += 1
        except Exception:
            # A broken subscriber must not undo the mutation that triggered it.
            logger.exception("%s subscriber for owner %s raised", self.name, subscription.owner_id)

    def _remove(self, subscription: Subscription[T]) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

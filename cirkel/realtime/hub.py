"""
cirkel/realtime/hub.py
In-memory snapshot hub for live notification sources.

Subscribers register a loader and a callback on a topic. Every publish on
the topic reloads the full current state through the loader and hands it
to the callback: each change yields exactly one callback per subscriber,
and every callback is a complete snapshot, never a delta.

Subscriptions stay live until cancelled; cancel() must be called when the
observer goes away.
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from cirkel.core.metrics import notification_subscriptions_active

logger = logging.getLogger(__name__)

Loader = Callable[[], Any]
Callback = Callable[[Any], None]


class Subscription:
    """Handle returned by SnapshotHub.subscribe."""

    def __init__(self, hub: "SnapshotHub", topic: str, loader: Loader, callback: Callback):
        self.hub = hub
        self.topic = topic
        self.loader = loader
        self.callback = callback
        self.active = True
        # Serializes deliveries so one subscriber sees snapshots in order
        self._delivery_lock = threading.Lock()

    def deliver(self) -> bool:
        """Load a fresh snapshot and hand it over. Returns False once cancelled."""
        with self._delivery_lock:
            if not self.active:
                return False
            snapshot = self.loader()
            self.callback(snapshot)
            return True

    def cancel(self) -> None:
        """Stop receiving snapshots. Safe to call more than once."""
        self.hub._remove(self)


class SnapshotHub:
    """
    Topic -> subscriptions map with thread-safe register, publish, cancel.

    Publishing runs on the writer's thread after its transaction commits.
    """

    def __init__(self):
        self._topics: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, loader: Loader, callback: Callback, deliver_initial: bool = True) -> Subscription:
        """
        Register an observer on a topic.

        Args:
            topic: Source topic (one source for one user)
            loader: Returns the full current snapshot of the source
            callback: Receives each snapshot
            deliver_initial: Send the current snapshot right away
        """
        subscription = Subscription(self, topic, loader, callback)
        with self._lock:
            self._topics.setdefault(topic, []).append(subscription)
        notification_subscriptions_active.inc(labels={"topic": topic.split(":", 1)[0]})
        logger.debug(f"[HUB] Subscribed to {topic}. Total: {self.subscriber_count(topic)}")

        if deliver_initial:
            subscription.deliver()
        return subscription

    def publish(self, topic: str) -> int:
        """
        Notify every subscriber of a topic that its source changed.

        Returns the number of snapshots delivered. A failing subscriber is
        logged and skipped; the others still get their snapshot.
        """
        with self._lock:
            subscriptions = list(self._topics.get(topic, ()))

        delivered = 0
        for subscription in subscriptions:
            try:
                if subscription.deliver():
                    delivered += 1
            except Exception as e:
                logger.warning(f"[HUB] Subscriber on {topic} failed: {e}")
        return delivered

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if not subscription.active:
                return
            subscription.active = False
            remaining = self._topics.get(subscription.topic, [])
            if subscription in remaining:
                remaining.remove(subscription)
            if not remaining:
                self._topics.pop(subscription.topic, None)
        notification_subscriptions_active.dec(labels={"topic": subscription.topic.split(":", 1)[0]})
        logger.debug(f"[HUB] Cancelled subscription on {subscription.topic}")

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._topics.get(topic, ()))
            return sum(len(subs) for subs in self._topics.values())

    def clear(self) -> None:
        """Drop every subscription (tests, shutdown)."""
        with self._lock:
            subscriptions = [s for subs in self._topics.values() for s in subs]
        for subscription in subscriptions:
            subscription.cancel()


# Global singleton hub instance
hub = SnapshotHub()

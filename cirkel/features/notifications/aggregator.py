"""
Notification feed merge.

merge_feed is a pure function over the latest snapshot of each source.
LiveFeed keeps those snapshots current through hub subscriptions and
re-derives the whole feed every time any one source fires.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from cirkel.features.notifications.sources import subscribe_source
from cirkel.models.notification import FeedFilter, NotificationEvent, NotificationFeed, NotificationKind
from cirkel.realtime.hub import SnapshotHub, Subscription


def merge_feed(
    user_id: str,
    snapshots: Iterable[Iterable[NotificationEvent]],
    feed_filter: FeedFilter = FeedFilter.ALL,
) -> NotificationFeed:
    """
    Concatenate, sort newest first, then filter.

    The unread total is counted before the filter so the badge does not
    change with the selected category. Equal timestamps keep no particular
    order.
    """
    merged: List[NotificationEvent] = [event for snapshot in snapshots for event in snapshot]
    merged.sort(key=lambda event: event.occurred_at, reverse=True)

    feed_filter = FeedFilter(feed_filter)
    return NotificationFeed(
        user_id=user_id,
        filter=feed_filter,
        events=[event for event in merged if feed_filter.matches(event.kind)],
        total_unread=sum(1 for event in merged if not event.read),
        generated_at=datetime.now(timezone.utc),
    )


class LiveFeed:
    """
    Merged feed kept live over the three sources.

    `on_change` receives a freshly merged NotificationFeed after the
    initial load and after every source change. close() cancels all three
    subscriptions.
    """

    def __init__(
        self,
        user_id: str,
        on_change: Callable[[NotificationFeed], None],
        feed_filter: FeedFilter = FeedFilter.ALL,
        hub: Optional[SnapshotHub] = None,
    ):
        self.user_id = user_id
        self.on_change = on_change
        self.feed_filter = FeedFilter(feed_filter)
        self._snapshots: Dict[NotificationKind, List[NotificationEvent]] = {kind: [] for kind in NotificationKind}
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._ready = False

        for kind in NotificationKind:
            self._subscriptions.append(
                subscribe_source(kind, user_id, self._make_callback(kind), hub=hub)
            )
        self._ready = True
        self._emit()

    def _make_callback(self, kind: NotificationKind) -> Callable[[List[NotificationEvent]], None]:
        def callback(snapshot: List[NotificationEvent]) -> None:
            with self._lock:
                self._snapshots[kind] = list(snapshot)
            if self._ready:
                self._emit()
        return callback

    def current(self) -> NotificationFeed:
        with self._lock:
            snapshots = [list(events) for events in self._snapshots.values()]
        return merge_feed(self.user_id, snapshots, self.feed_filter)

    def _emit(self) -> None:
        self.on_change(self.current())

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions = []

    def __enter__(self) -> "LiveFeed":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

import typing

from errors import ValidationError
from timeline_generator import to_epoch_millis, to_iso_string, utc_now

MAX_EVENTS = 100


class EventTracker:
    """Recent analytics events (newest first) and the running counters shown on the public page."""

    def __init__(self, max_events: int = MAX_EVENTS, active_users: int = 1):
        self.max_events = max_events
        self._events = []
        self._stats = {
            "totalEvents": 0,
            "activeUsers": active_users,
            "pageViews": 0,
        }

    @property
    def stats(self) -> typing.Dict[str, int]:
        return dict(self._stats)

    def list(self) -> typing.List[dict]:
        return list(self._events)

    def track(
        self,
        name: typing.Optional[str],
        category: typing.Optional[str],
        value: typing.Any = None,
        timestamp: typing.Optional[str] = None,
    ) -> dict:
        if not name or not category:
            raise ValidationError("Event name and category are required")

        now = utc_now()
        event = {
            "id": str(to_epoch_millis(now)),
            "name": name,
            "category": category,
            "value": value or None,
            "timestamp": timestamp or to_iso_string(now),
        }

        self._events.insert(0, event)
        del self._events[self.max_events:]

        self._stats["totalEvents"] += 1
        if category == "page":
            self._stats["pageViews"] += 1
        return event

    def clear(self) -> None:
        self._events = []
        self._stats = {
            "totalEvents": 0,
            "activeUsers": self._stats["activeUsers"],
            "pageViews": 0,
        }

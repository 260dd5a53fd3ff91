# Standard library imports
import datetime
import math
import typing

from errors import ValidationError

STATUSES = (
    "Picked Up",
    "In Transit",
    "Out for Delivery",
    "Collected from Postnet",
    "Delivered",
)

STATUS_DESCRIPTIONS = {
    "Picked Up": "Package picked up by receiver",
    "In Transit": "Package is on the way to destination",
    "Out for Delivery": "Package is out for delivery",
    "Collected from Postnet": "Package collected from Postnet",
    "Delivered": "Package has been delivered successfully",
}
DEFAULT_DESCRIPTION = "Package status updated"

# (record field, timeline label, description)
MILESTONES = (
    ("collectedFromPostnetTime", "Collected from Postnet", "Package collected from Postnet"),
    ("outForDeliveryTime", "Out for Delivery", "Package is out for delivery"),
    ("pickedUpTime", "Picked Up", "Package picked up by receiver"),
)

DISPLAY_PRIORITY = {
    "Collected from Postnet": 1,
    "In Transit": 2,
    "Out for Delivery": 3,
    "Picked Up": 4,
    "Delivered": 5,
}
UNKNOWN_PRIORITY = 999

REFRESH_INTERVAL_SECONDS = 30
ONE_DAY_SECONDS = 24 * 60 * 60


def parse_timestamp(value: typing.Any) -> datetime.datetime:
    """
    Convert an ISO 8601 string, a datetime or an epoch-milliseconds number into an aware datetime.

    Naive values are treated as UTC. A trailing "Z" (as produced by JavaScript's toISOString) is accepted.

    Raises:
    ValidationError: If the value cannot be interpreted as a point in time.
    """
    if isinstance(value, datetime.datetime):
        moment = value
    elif isinstance(value, bool):
        raise ValidationError(f"invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        moment = datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"invalid timestamp: {value!r}")
    else:
        raise ValidationError(f"invalid timestamp: {value!r}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return moment


def to_epoch_millis(moment: datetime.datetime) -> int:
    return int(round(moment.timestamp() * 1000))


def to_iso_string(moment: datetime.datetime) -> str:
    """Format a datetime the way JavaScript's Date.toISOString does, e.g. 2026-10-19T14:30:00.000Z."""
    moment = moment.astimezone(datetime.timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)


def format_display_time(moment: datetime.datetime) -> str:
    """Long-form display time, e.g. "October 19, 2026, 02:30 PM"."""
    return f"{moment:%B} {moment.day}, {moment:%Y, %I:%M %p}"


def _now_millis(now: typing.Any) -> int:
    if now is None:
        return to_epoch_millis(utc_now())
    if isinstance(now, (int, float)) and not isinstance(now, bool):
        return int(now)
    return to_epoch_millis(parse_timestamp(now))


def get_status_description(status: str) -> str:
    return STATUS_DESCRIPTIONS.get(status, DEFAULT_DESCRIPTION)


def build_timeline_entry(status: str, moment: typing.Any, description: typing.Optional[str] = None) -> dict:
    moment = parse_timestamp(moment)
    return {
        "time": format_display_time(moment),
        "status": status,
        "description": description if description is not None else get_status_description(status),
        "timestamp": to_epoch_millis(moment),
    }


def build_creation_timeline(
    status: str,
    status_time: typing.Any,
    milestones: typing.Optional[typing.Dict[str, typing.Any]] = None,
) -> list:
    """
    Build the timeline stored with a newly created shipment.

    The current status comes first, followed by one entry for every milestone time that was supplied
    (None and empty strings count as absent). The result is ordered by timestamp, most recent first;
    entries sharing a timestamp keep the order they were added in.

    Parameters:
    status (str): The shipment's current status.
    status_time: When the current status became effective.
    milestones (dict, optional): Milestone times keyed by record field, e.g. {"pickedUpTime": "..."}.

    Returns:
    list: Timeline entry dictionaries with time, status, description and timestamp keys.
    """
    milestones = milestones or {}
    timeline = [build_timeline_entry(status, status_time)]

    for field, label, description in MILESTONES:
        milestone_time = milestones.get(field)
        if milestone_time in (None, ""):
            continue
        timeline.append(build_timeline_entry(label, milestone_time, description))

    # sorted() keeps equal timestamps in insertion order even with reverse=True
    return sorted(timeline, key=lambda entry: entry["timestamp"], reverse=True)


def display_priority(entry: dict) -> int:
    return DISPLAY_PRIORITY.get(entry.get("status"), UNKNOWN_PRIORITY)


def order_for_display(timeline: list) -> list:
    """
    Order a stored timeline by the fixed narrative status priority used on the tracking page.

    This is not chronological: Collected from Postnet, In Transit, Out for Delivery, Picked Up and
    Delivered always appear in that order, anything else after them in its original relative order.
    """
    return sorted(timeline, key=display_priority)


def entry_millis(entry: dict) -> typing.Optional[float]:
    """Numeric timestamp of an entry; a missing one counts as 0, anything non-numeric as None."""
    timestamp = entry.get("timestamp")
    if timestamp is None:
        return 0
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        return timestamp
    return None


def is_completed(entry: dict, now: typing.Any = None) -> bool:
    timestamp = entry_millis(entry)
    return timestamp is not None and _now_millis(now) >= timestamp


def render_timeline(timeline: list, now: typing.Any = None) -> list:
    """Display-ordered copies of the entries, flagged as completed and/or active."""
    now_ms = _now_millis(now)
    rendered = []
    for index, entry in enumerate(order_for_display(timeline)):
        completed = is_completed(entry, now_ms)
        rendered.append({
            **entry,
            "completed": completed,
            "active": index == 0 and completed,
        })
    return rendered


def needs_refresh(timeline: list, now: typing.Any = None) -> bool:
    """True while a transit entry is still scheduled in the future, so the rendering must be re-checked."""
    now_ms = _now_millis(now)
    for entry in timeline:
        timestamp = entry_millis(entry)
        if timestamp is not None and "transit" in str(entry.get("status", "")).lower() and timestamp > now_ms:
            return True
    return False


def estimate_transit_time(estimated_arrival: typing.Any, now: typing.Any = None) -> str:
    arrival = parse_timestamp(estimated_arrival)
    now = utc_now() if now is None else parse_timestamp(now)
    days = math.ceil(abs((arrival - now).total_seconds()) / ONE_DAY_SECONDS)

    if days <= 1:
        return "1 Business Day"
    if days <= 3:
        return "2-3 Business Days"
    if days <= 5:
        return "3-5 Business Days"
    return f"{days} Business Days"


def _fallback_time(moment: datetime.datetime, clock: typing.Optional[str] = None) -> str:
    day = f"{moment:%B} {moment.day}, {moment:%Y}"
    return f"{day} - {clock if clock else f'{moment:%I:%M %p}'}"


def generate_fallback_timeline(shipment: dict, now: typing.Any = None) -> list:
    """
    Build a placeholder timeline for a shipment stored without one.

    The current status is shown at the present time. Unless the parcel is already picked up, an
    "Out for Delivery" step yesterday morning and a "Picked Up" step two days ago are added beneath it.
    Entries carry no timestamp, so they always render as completed.
    """
    today = utc_now() if now is None else parse_timestamp(now)
    status = shipment.get("status")
    timeline = [{
        "time": _fallback_time(today),
        "status": status,
        "description": get_status_description(status),
    }]

    if status != "Picked Up":
        timeline.append({
            "time": _fallback_time(today - datetime.timedelta(days=1), "8:00 AM"),
            "status": "Out for Delivery",
            "description": get_status_description("Out for Delivery"),
        })
        timeline.append({
            "time": _fallback_time(today - datetime.timedelta(days=2), "6:45 PM"),
            "status": "Picked Up",
            "description": get_status_description("Picked Up"),
        })

    return timeline


def timeline_for_display(shipment: dict, now: typing.Any = None) -> list:
    timeline = shipment.get("timeline")
    if timeline is not None:
        return timeline
    return generate_fallback_timeline(shipment, now)

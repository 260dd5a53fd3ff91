# Standard library imports
import argparse
import datetime
import os
import sys
import time
import typing

# Third-party imports
import cachetools
import requests
import requests.utils

from errors import ServerUnavailableError, ValidationError
from settings import JsonFileHandler
from timeline_generator import (
    MILESTONES,
    REFRESH_INTERVAL_SECONDS,
    build_creation_timeline,
    estimate_transit_time,
    format_display_time,
    needs_refresh,
    parse_timestamp,
    render_timeline,
    timeline_for_display,
    to_iso_string,
    utc_now,
)


# CONSTANTS
TRACKING_API_URL = os.getenv("TRACKING_API_URL", "http://localhost:3000")
MAX_RETRIES = 5
DELAY_SECONDS = 2
REQUEST_TIMEOUT = 10
EXPORT_CACHE = cachetools.TTLCache(maxsize=8, ttl=10)

TEXT_FIELDS = ("contents", "origin", "destination")


def build_shipment(form: typing.Dict, now: typing.Optional[datetime.datetime] = None) -> dict:
    """
    Turn the admin form fields into a complete shipment record ready to POST.

    Parameters:
    form (dict): trackingNumber, contents, origin, destination, status, statusTime, estimatedArrival and the
        optional milestone times (collectedFromPostnetTime, outForDeliveryTime, pickedUpTime).
    now (datetime, optional): Reference time for transitTime and createdAt. Defaults to the current time.

    Returns:
    dict: The shipment record, including its transit time estimate and creation timeline.

    Raises:
    ValidationError: If the tracking number, status, status time or estimated arrival is missing.
    """
    now = now or utc_now()
    tracking_number = (form.get("trackingNumber") or "").strip()
    status = form.get("status")
    status_time = form.get("statusTime")
    estimated_arrival = form.get("estimatedArrival")

    if not tracking_number or not status or not status_time or not estimated_arrival:
        raise ValidationError("Please fill in all required fields!")

    status_time = parse_timestamp(status_time)
    arrival = parse_timestamp(estimated_arrival)
    milestones = {}
    for field, _, _ in MILESTONES:
        value = form.get(field)
        milestones[field] = to_iso_string(parse_timestamp(value)) if value else None

    shipment = {"trackingNumber": tracking_number}
    for field in TEXT_FIELDS:
        shipment[field] = (form.get(field) or "").strip()
    shipment.update({
        "status": status,
        "statusTime": to_iso_string(status_time),
        **milestones,
        "estimatedArrival": to_iso_string(arrival),
        "transitTime": estimate_transit_time(arrival, now),
        "createdAt": to_iso_string(now),
        "timeline": build_creation_timeline(status, status_time, milestones),
    })
    return shipment


def compute_dashboard_stats(
    shipments: typing.List[dict],
    today: typing.Optional[datetime.date] = None,
    total_requests: int = 0,
) -> typing.Dict[str, int]:
    today = today or utc_now().date()

    def delivered_today(shipment: dict) -> bool:
        if shipment.get("status") != "Delivered" or not shipment.get("createdAt"):
            return False
        try:
            return parse_timestamp(shipment["createdAt"]).date() == today
        except ValidationError:
            return False

    return {
        "totalShipments": len(shipments),
        "activeShipments": sum(1 for s in shipments if s.get("status") != "Delivered"),
        "deliveredToday": sum(1 for s in shipments if delivered_today(s)),
        "totalRequests": total_requests,
    }


def format_relative_time(timestamp: typing.Any, now: typing.Optional[datetime.datetime] = None) -> str:
    now = now or utc_now()
    elapsed = (now - parse_timestamp(timestamp)).total_seconds()
    minutes = int(elapsed // 60)
    hours = int(elapsed // 3600)
    days = int(elapsed // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    return f"{days}d ago"


def render_shipment(shipment: dict, now: typing.Optional[datetime.datetime] = None) -> str:
    lines = [
        f"📦 {shipment.get('trackingNumber')}",
        f"    Contents: {shipment.get('contents') or 'N/A'}",
        f"    Route: {shipment.get('origin') or 'N/A'} → {shipment.get('destination') or 'N/A'}",
        f"    Status: {shipment.get('status')}",
        f"    Transit time: {shipment.get('transitTime') or 'N/A'}",
    ]
    if shipment.get("estimatedArrival"):
        try:
            lines.append(f"    Estimated arrival: {format_display_time(parse_timestamp(shipment['estimatedArrival']))}")
        except ValidationError:
            lines.append(f"    Estimated arrival: {shipment['estimatedArrival']}")

    lines.append("    Timeline:")
    for entry in render_timeline(timeline_for_display(shipment, now), now):
        marker = "*" if entry["active"] else ("x" if entry["completed"] else " ")
        lines.append(f"      [{marker}] {entry.get('time')}  {entry.get('status')} - {entry.get('description')}")
    return "\n".join(lines)


class AdminClient:
    """HTTP client for the tracking server, used by the admin console and the public tracking flow."""

    def __init__(
        self,
        base_url: str = TRACKING_API_URL,
        session: typing.Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
        delay_seconds: float = DELAY_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.delay_seconds = delay_seconds
        self.total_requests = 0

    def request(self, method: str, path: str, **kwargs) -> dict:
        """
        Send a request and decode its JSON body, retrying when the server cannot be reached.

        HTTP error responses are not retried: their JSON envelope is returned so the caller can look at
        the success flag and the error or message field.
        """
        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries):
            try:
                self.total_requests += 1
                response = self.session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
                return response.json()
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                print(f"[!] - Attempt {attempt + 1}: Error reaching {url}: {e}")
                if attempt + 1 < self.max_retries:
                    time.sleep(self.delay_seconds)
        raise ServerUnavailableError(f"Failed to connect to server at {self.base_url}")

    def load_shipments(self) -> typing.List[dict]:
        data = self.request("GET", "/api/shipments")
        if data.get("success"):
            return data.get("shipments") or []
        return []

    def get_shipment(self, tracking_number: str) -> typing.Optional[dict]:
        data = self.request("GET", f"/api/shipments/{requests.utils.quote(tracking_number, safe='')}")
        if data.get("success") and data.get("shipment"):
            return data["shipment"]
        return None

    def add_shipment(self, form: typing.Dict) -> dict:
        return self.request("POST", "/api/shipments", json=build_shipment(form))

    def update_shipment(self, tracking_number: str, fields: typing.Dict) -> dict:
        return self.request("PUT", f"/api/shipments/{requests.utils.quote(tracking_number, safe='')}", json=fields)

    def delete_shipment(self, tracking_number: str) -> dict:
        return self.request("DELETE", f"/api/shipments/{requests.utils.quote(tracking_number, safe='')}")

    def clear_shipments(self) -> dict:
        return self.request("DELETE", "/api/shipments")

    def export_shipments(self, path: typing.Optional[str] = None) -> str:
        path = path or f"shipments-{utc_now():%Y-%m-%d}.json"
        JsonFileHandler(path, EXPORT_CACHE, []).write(self.load_shipments())
        return path

    def dashboard_stats(self) -> typing.Dict[str, int]:
        shipments = self.load_shipments()
        return compute_dashboard_stats(shipments, total_requests=self.total_requests)

    def track_parcel(self, tracking_number: str) -> typing.Optional[dict]:
        """Look a parcel up the way the public page does, logging a shipment event when it exists."""
        tracking_number = tracking_number.strip()
        if not tracking_number:
            raise ValidationError("Please enter a tracking number")

        shipment = self.get_shipment(tracking_number)
        if shipment is None:
            return None

        self.request("POST", "/api/track", json={
            "name": tracking_number,
            "category": "shipment",
            "timestamp": to_iso_string(utc_now()),
        })
        return shipment

    def get_events(self) -> dict:
        return self.request("GET", "/api/events")

    def clear_events(self) -> dict:
        return self.request("DELETE", "/api/events")

    def health(self) -> dict:
        return self.request("GET", "/health")


def watch_shipment(
    shipment: dict,
    interval_seconds: float = REFRESH_INTERVAL_SECONDS,
    clock: typing.Callable[[], datetime.datetime] = utc_now,
    sleep: typing.Callable[[float], None] = time.sleep,
    output: typing.Callable[[str], None] = print,
) -> int:
    """
    Render a shipment, then keep re-rendering it while a transit step is still in the future.

    Only the rendering is repeated; the shipment is not fetched again. Returns the number of renders.
    """
    timeline = timeline_for_display(shipment, clock())
    renders = 0
    while True:
        now = clock()
        output(render_shipment(shipment, now))
        renders += 1
        if not needs_refresh(timeline, now):
            return renders
        sleep(interval_seconds)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Package tracker admin console")
    parser.add_argument("--url", default=TRACKING_API_URL, help="tracking server base URL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="list all shipments")

    add = commands.add_parser("add", help="add a shipment")
    add.add_argument("tracking_number")
    add.add_argument("--contents", default="")
    add.add_argument("--origin", default="")
    add.add_argument("--destination", default="")
    add.add_argument("--status", required=True)
    add.add_argument("--status-time", default=None, help="ISO time, defaults to now")
    add.add_argument("--arrival", default=None, help="ISO date, defaults to three days from now")
    add.add_argument("--collected-from-postnet-time", default=None)
    add.add_argument("--out-for-delivery-time", default=None)
    add.add_argument("--picked-up-time", default=None)

    for name, help_text in (("view", "show a shipment"), ("watch", "show a shipment and refresh it"),
                            ("delete", "delete a shipment"), ("track", "look up a parcel as a customer")):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("tracking_number")

    edit = commands.add_parser("edit", help="update shipment fields")
    edit.add_argument("tracking_number")
    edit.add_argument("--contents")
    edit.add_argument("--origin")
    edit.add_argument("--destination")
    edit.add_argument("--status")

    commands.add_parser("clear", help="delete every shipment")
    export = commands.add_parser("export", help="export shipments to a JSON file")
    export.add_argument("--output", default=None)
    commands.add_parser("stats", help="show dashboard statistics")
    commands.add_parser("events", help="show tracked events")
    commands.add_parser("clear-events", help="delete every tracked event")
    commands.add_parser("health", help="check the server")
    return parser


def run_command(client: AdminClient, args: argparse.Namespace) -> int:
    if args.command == "list":
        shipments = client.load_shipments()
        if not shipments:
            print("[-] No shipments yet")
        for shipment in shipments:
            print(f"📦 {shipment.get('trackingNumber')}  {shipment.get('contents')} • "
                  f"{shipment.get('origin')} → {shipment.get('destination')}  "
                  f"Status: {shipment.get('status')} • ETA: {shipment.get('estimatedArrival')}")
        return 0

    if args.command == "add":
        now = utc_now()
        form = {
            "trackingNumber": args.tracking_number,
            "contents": args.contents,
            "origin": args.origin,
            "destination": args.destination,
            "status": args.status,
            "statusTime": args.status_time or to_iso_string(now),
            "estimatedArrival": args.arrival or f"{now + datetime.timedelta(days=3):%Y-%m-%d}",
            "collectedFromPostnetTime": args.collected_from_postnet_time,
            "outForDeliveryTime": args.out_for_delivery_time,
            "pickedUpTime": args.picked_up_time,
        }
        data = client.add_shipment(form)
        if not data.get("success"):
            print(f"[!] {data.get('error') or 'Failed to save shipment.'}")
            return 1
        print(f"[+] Shipment {args.tracking_number} added successfully!")
        return 0

    if args.command in ("view", "watch"):
        shipment = client.get_shipment(args.tracking_number)
        if shipment is None:
            print(f'[!] The tracking number "{args.tracking_number}" does not exist in our system.')
            return 1
        if args.command == "watch":
            watch_shipment(shipment)
        else:
            print(render_shipment(shipment))
        return 0

    if args.command == "track":
        shipment = client.track_parcel(args.tracking_number)
        if shipment is None:
            print("[!] Invalid tracking number. Please check and try again.")
            return 1
        print(render_shipment(shipment))
        return 0

    if args.command == "edit":
        fields = {
            key: value for key, value in (
                ("contents", args.contents),
                ("origin", args.origin),
                ("destination", args.destination),
                ("status", args.status),
            ) if value is not None
        }
        data = client.update_shipment(args.tracking_number, fields)
        if not data.get("success"):
            print(f"[!] {data.get('error') or 'Failed to update shipment.'}")
            return 1
        print(f"[+] Shipment {args.tracking_number} updated")
        return 0

    if args.command == "delete":
        data = client.delete_shipment(args.tracking_number)
        if not data.get("success"):
            print("[!] Error deleting shipment. Please try again.")
            return 1
        print("[+] Shipment deleted successfully!")
        return 0

    if args.command == "clear":
        client.clear_shipments()
        print("[+] All data cleared!")
        return 0

    if args.command == "export":
        path = client.export_shipments(args.output)
        print(f"[+] Data exported to {path}")
        return 0

    if args.command == "stats":
        for key, value in client.dashboard_stats().items():
            print(f"[+] {key}: {value}")
        return 0

    if args.command == "events":
        data = client.get_events()
        stats = data.get("stats", {})
        print(f"[+] Total events: {stats.get('totalEvents')} • Active users: {stats.get('activeUsers')} "
              f"• Page views: {stats.get('pageViews')}")
        events = data.get("events") or []
        if not events:
            print("[-] No events tracked yet")
        for event in events:
            value = f"  Value: {event['value']}" if event.get("value") else ""
            try:
                when = format_relative_time(event.get("timestamp"))
            except ValidationError:
                when = str(event.get("timestamp"))
            print(f"    {event.get('name')} ({event.get('category')})  {when}{value}")
        return 0

    if args.command == "clear-events":
        client.clear_events()
        print("[+] All events cleared")
        return 0

    if args.command == "health":
        data = client.health()
        print(f"[+] {data.get('status')} • uptime {data.get('uptime', 0):.0f}s")
        return 0

    return 2


def main(argv: typing.Optional[typing.List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    client = AdminClient(args.url)
    try:
        return run_command(client, args)
    except ValidationError as e:
        print(f"[!] {e}")
        return 1
    except ServerUnavailableError as e:
        print(f"[!] {e}. Please ensure the server is running.")
        return 1


if __name__ == "__main__":
    sys.exit(main())

import datetime
import json
from unittest import mock

import pytest
import requests

import admin_client
from admin_client import (
    AdminClient,
    build_shipment,
    compute_dashboard_stats,
    format_relative_time,
    render_shipment,
    watch_shipment,
)
from errors import ServerUnavailableError, ValidationError

UTC = datetime.timezone.utc


def make_response(payload):
    response = mock.Mock()
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


@pytest.fixture
def api(session):
    return AdminClient("http://tracker.test/", session=session, max_retries=3, delay_seconds=0)


@pytest.fixture
def form():
    return {
        "trackingNumber": "  PX100 ",
        "contents": " Books ",
        "origin": "Cape Town",
        "destination": "Durban",
        "status": "In Transit",
        "statusTime": "2026-10-19T10:00:00.000Z",
        "estimatedArrival": "2026-10-22",
        "collectedFromPostnetTime": "",
        "outForDeliveryTime": None,
        "pickedUpTime": "2026-10-18T18:45:00.000Z",
    }


def test_build_shipment(form, now):
    shipment = build_shipment(form, now)

    assert shipment["trackingNumber"] == "PX100"
    assert shipment["contents"] == "Books"
    assert shipment["estimatedArrival"] == "2026-10-22T00:00:00.000Z"
    assert shipment["transitTime"] == "2-3 Business Days"
    assert shipment["createdAt"] == "2026-10-19T12:00:00.000Z"
    assert shipment["collectedFromPostnetTime"] is None
    assert shipment["pickedUpTime"] == "2026-10-18T18:45:00.000Z"
    assert [e["status"] for e in shipment["timeline"]] == ["In Transit", "Picked Up"]


@pytest.mark.parametrize("field", ["trackingNumber", "status", "statusTime", "estimatedArrival"])
def test_build_shipment_requires_fields(form, now, field):
    form[field] = ""

    with pytest.raises(ValidationError, match="required fields"):
        build_shipment(form, now)


def test_dashboard_stats(now):
    shipments = [
        {"status": "Delivered", "createdAt": "2026-10-19T08:00:00.000Z"},
        {"status": "Delivered", "createdAt": "2026-10-01T08:00:00.000Z"},
        {"status": "In Transit", "createdAt": "2026-10-19T08:00:00.000Z"},
        {"status": "Picked Up"},
    ]

    assert compute_dashboard_stats(shipments, now.date(), total_requests=7) == {
        "totalShipments": 4,
        "activeShipments": 2,
        "deliveredToday": 1,
        "totalRequests": 7,
    }


@pytest.mark.parametrize("delta, expected", [
    (datetime.timedelta(seconds=30), "Just now"),
    (datetime.timedelta(minutes=5), "5m ago"),
    (datetime.timedelta(hours=3), "3h ago"),
    (datetime.timedelta(days=2, hours=1), "2d ago"),
])
def test_format_relative_time(now, delta, expected):
    assert format_relative_time(now - delta, now) == expected


def test_render_shipment_marks_timeline(form, now):
    shipment = build_shipment(form, now)

    rendered = render_shipment(shipment, now)

    assert "📦 PX100" in rendered
    assert "Route: Cape Town → Durban" in rendered
    lines = [line.strip() for line in rendered.splitlines() if line.strip().startswith("[")]
    assert lines[0].startswith("[*]") and "In Transit" in lines[0]
    assert lines[1].startswith("[x]") and "Picked Up" in lines[1]


def test_request_retries_connection_errors(api, session):
    session.request.side_effect = [
        requests.exceptions.ConnectionError("refused"),
        make_response({"success": True, "shipments": []}),
    ]

    assert api.load_shipments() == []
    assert session.request.call_count == 2
    assert api.total_requests == 2


def test_request_gives_up_after_max_retries(api, session):
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(ServerUnavailableError):
        api.load_shipments()
    assert session.request.call_count == 3


def test_get_shipment_quotes_tracking_number(api, session):
    session.request.return_value = make_response({"success": False, "message": "Shipment not found"})

    assert api.get_shipment("PX 1/2") is None
    method, url = session.request.call_args.args
    assert (method, url) == ("GET", "http://tracker.test/api/shipments/PX%201%2F2")


def test_add_shipment_posts_built_record(api, session, form):
    session.request.return_value = make_response({"success": True})

    api.add_shipment(form)

    payload = session.request.call_args.kwargs["json"]
    assert payload["trackingNumber"] == "PX100"
    assert payload["timeline"]


def test_track_parcel_logs_event_for_known_shipment(api, session):
    shipment = {"trackingNumber": "PX100", "status": "Delivered"}
    session.request.side_effect = [
        make_response({"success": True, "shipment": shipment}),
        make_response({"success": True}),
    ]

    assert api.track_parcel(" PX100 ") == shipment
    track_call = session.request.call_args_list[1]
    assert track_call.args == ("POST", "http://tracker.test/api/track")
    assert track_call.kwargs["json"]["name"] == "PX100"
    assert track_call.kwargs["json"]["category"] == "shipment"


def test_track_parcel_unknown_does_not_log(api, session):
    session.request.return_value = make_response({"success": False, "message": "Shipment not found"})

    assert api.track_parcel("NOPE") is None
    assert session.request.call_count == 1


def test_track_parcel_requires_number(api):
    with pytest.raises(ValidationError):
        api.track_parcel("   ")


def test_export_shipments_writes_json(api, session, tmp_path):
    shipments = [{"trackingNumber": "PX100"}]
    session.request.return_value = make_response({"success": True, "shipments": shipments})
    target = tmp_path / "export.json"

    path = api.export_shipments(str(target))

    assert path == str(target)
    assert json.loads(target.read_text()) == shipments


def test_watch_rerenders_until_transit_time_passes(form):
    start = datetime.datetime(2026, 10, 19, 9, 59, tzinfo=UTC)
    shipment = build_shipment(form, start)
    ticks = iter([start, start, start + datetime.timedelta(seconds=30), start + datetime.timedelta(seconds=60)])
    sleeps = []
    output = []

    renders = watch_shipment(shipment, clock=lambda: next(ticks), sleep=sleeps.append, output=output.append)

    assert renders == 3
    assert sleeps == [30, 30]
    assert "[*]" in output[-1]


def test_watch_renders_once_without_future_transit(form, now):
    shipment = build_shipment(form, now)
    sleeps = []

    assert watch_shipment(shipment, clock=lambda: now, sleep=sleeps.append, output=lambda text: None) == 1
    assert sleeps == []


def test_main_reports_unreachable_server(capsys):
    with mock.patch.object(AdminClient, "request", side_effect=ServerUnavailableError("Failed to connect")):
        status = admin_client.main(["--url", "http://tracker.test", "list"])

    assert status == 1
    assert "Please ensure the server is running" in capsys.readouterr().out


def test_main_view_unknown(capsys):
    with mock.patch.object(AdminClient, "get_shipment", return_value=None):
        status = admin_client.main(["view", "NOPE"])

    assert status == 1
    assert "does not exist" in capsys.readouterr().out


def test_render_shipment_with_text_timestamp(now):
    shipment = {
        "trackingNumber": "PX100",
        "status": "In Transit",
        "timeline": [{"time": "today", "status": "In Transit", "description": "moving", "timestamp": "2026-10-19T10:00:00Z"}],
    }

    rendered = render_shipment(shipment, now)

    assert "[ ] today  In Transit - moving" in rendered


def test_events_listing_survives_unparseable_timestamp(capsys):
    events = {
        "success": True,
        "events": [
            {"name": "bad", "category": "click", "value": None, "timestamp": "yesterday"},
            {"name": "good", "category": "click", "value": None, "timestamp": "2026-10-19T10:00:00.000Z"},
        ],
        "stats": {"totalEvents": 2, "activeUsers": 1, "pageViews": 0},
    }
    with mock.patch.object(AdminClient, "get_events", return_value=events):
        status = admin_client.main(["events"])

    out = capsys.readouterr().out
    assert status == 0
    assert "bad (click)  yesterday" in out
    assert "good (click)" in out

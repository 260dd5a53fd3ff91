# Standard library imports
import logging
import time
import typing

# Third-party imports
import flask
import werkzeug.exceptions

from errors import NotFoundError, ValidationError
from event_tracker import EventTracker
from settings import load_server_settings, settings_handler
from shipment_store import ShipmentStore
from timeline_generator import (
    MILESTONES,
    build_creation_timeline,
    estimate_transit_time,
    to_iso_string,
    utc_now,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger("package_tracker")


def get_shipment_store() -> ShipmentStore:
    return flask.current_app.extensions["shipment_store"]


def get_event_tracker() -> EventTracker:
    return flask.current_app.extensions["event_tracker"]


def complete_shipment(shipment: dict) -> dict:
    """
    Fill in the derived fields of a submitted shipment that the submitter left out.

    A shipment posted without a timeline gets one built from its status, status time and milestone
    times. transitTime is derived from estimatedArrival and createdAt is stamped with the current time.
    Fields the submitter did send are stored as-is.

    Raises:
    ValidationError: If the tracking number is missing, or a timeline has to be built without a
    status and status time.
    """
    tracking_number = shipment.get("trackingNumber")
    if not isinstance(tracking_number, str) or not tracking_number.strip():
        raise ValidationError("Tracking number is required")

    now = utc_now()
    completed = dict(shipment)

    if completed.get("timeline") is None:
        if not completed.get("status") or not completed.get("statusTime"):
            raise ValidationError("Status and status time are required to build a timeline")
        milestones = {field: completed.get(field) for field, _, _ in MILESTONES}
        completed["timeline"] = build_creation_timeline(completed["status"], completed["statusTime"], milestones)

    if not completed.get("transitTime") and completed.get("estimatedArrival"):
        completed["transitTime"] = estimate_transit_time(completed["estimatedArrival"], now)

    if not completed.get("createdAt"):
        completed["createdAt"] = to_iso_string(now)

    return completed


def register_routes(app: flask.Flask) -> None:
    @app.before_request
    def log_request() -> None:
        logger.info(f"{flask.request.method} {flask.request.path}")

    @app.route("/api/events", methods=["GET"])
    def api_list_events() -> flask.Response:
        tracker = get_event_tracker()
        return flask.jsonify(success=True, events=tracker.list(), stats=tracker.stats)

    @app.route("/api/track", methods=["POST"])
    def api_track_event() -> typing.Tuple[flask.Response, int]:
        try:
            data = flask.request.get_json(silent=True) or {}
            tracker = get_event_tracker()
            event = tracker.track(
                data.get("name"),
                data.get("category"),
                value=data.get("value"),
                timestamp=data.get("timestamp"),
            )
            logger.info(f"Event tracked: {event['name']} ({event['category']})")
            return flask.jsonify(success=True, event=event, stats=tracker.stats), 200
        except ValidationError as e:
            return flask.jsonify(success=False, error=str(e)), 400
        except Exception:
            logger.exception("Error tracking event")
            return flask.jsonify(success=False, error="Failed to track event"), 500

    @app.route("/api/stats", methods=["GET"])
    def api_stats() -> flask.Response:
        return flask.jsonify(success=True, stats=get_event_tracker().stats)

    @app.route("/api/events", methods=["DELETE"])
    def api_clear_events() -> flask.Response:
        get_event_tracker().clear()
        return flask.jsonify(success=True, message="All events cleared")

    @app.route("/api/shipments", methods=["GET"])
    def api_list_shipments() -> flask.Response:
        shipments = get_shipment_store().list()
        logger.info(f"GET /api/shipments - Returning {len(shipments)} shipments")
        return flask.jsonify(success=True, shipments=shipments)

    @app.route("/api/shipments/<path:tracking_number>", methods=["GET"])
    def api_get_shipment(tracking_number: str) -> typing.Tuple[flask.Response, int]:
        try:
            shipment = get_shipment_store().get(tracking_number)
            return flask.jsonify(success=True, shipment=shipment), 200
        except NotFoundError as e:
            return flask.jsonify(success=False, message=str(e)), 200
        except Exception:
            logger.exception("Error fetching shipment")
            return flask.jsonify(success=False, error="Failed to fetch shipment"), 500

    @app.route("/api/shipments", methods=["POST"])
    def api_add_shipment() -> typing.Tuple[flask.Response, int]:
        try:
            data = flask.request.get_json(silent=True)
            if not isinstance(data, dict):
                raise ValidationError("Shipment body must be a JSON object")
            shipment = get_shipment_store().create(complete_shipment(data))
            logger.info(f"Shipment added: {shipment['trackingNumber']}")
            return flask.jsonify(success=True, shipment=shipment), 200
        except ValidationError as e:
            return flask.jsonify(success=False, error=str(e)), 400
        except Exception:
            logger.exception("Error adding shipment")
            return flask.jsonify(success=False, error="Failed to add shipment"), 500

    @app.route("/api/shipments/<path:tracking_number>", methods=["PUT"])
    def api_update_shipment(tracking_number: str) -> typing.Tuple[flask.Response, int]:
        try:
            fields = flask.request.get_json(silent=True) or {}
            if not isinstance(fields, dict):
                raise ValidationError("Shipment fields must be a JSON object")
            shipment = get_shipment_store().update(tracking_number, fields)
            return flask.jsonify(success=True, shipment=shipment), 200
        except NotFoundError as e:
            return flask.jsonify(success=False, error=str(e)), 404
        except ValidationError as e:
            return flask.jsonify(success=False, error=str(e)), 400
        except Exception:
            logger.exception("Error updating shipment")
            return flask.jsonify(success=False, error="Failed to update shipment"), 500

    @app.route("/api/shipments/<path:tracking_number>", methods=["DELETE"])
    def api_delete_shipment(tracking_number: str) -> typing.Tuple[flask.Response, int]:
        try:
            store = get_shipment_store()
            logger.info(f"Deleting shipment: {tracking_number}")
            logger.info(f"Shipments before delete: {store.tracking_numbers()}")
            store.delete(tracking_number)
            logger.info(f"Shipments after delete: {store.tracking_numbers()}")
            return flask.jsonify(success=True, message="Shipment deleted"), 200
        except Exception:
            logger.exception("Error deleting shipment")
            return flask.jsonify(success=False, error="Failed to delete shipment"), 500

    @app.route("/api/shipments", methods=["DELETE"])
    def api_clear_shipments() -> typing.Tuple[flask.Response, int]:
        try:
            get_shipment_store().clear()
            return flask.jsonify(success=True, message="All shipments cleared"), 200
        except Exception:
            logger.exception("Error clearing shipments")
            return flask.jsonify(success=False, error="Failed to clear shipments"), 500

    @app.route("/health", methods=["GET"])
    def health() -> flask.Response:
        return flask.jsonify(
            status="healthy",
            timestamp=to_iso_string(utc_now()),
            uptime=time.monotonic() - app.config["STARTED_AT"],
        )


def register_error_handlers(app: flask.Flask) -> None:
    # Unknown methods on known paths are reported like unknown paths.
    @app.errorhandler(404)
    @app.errorhandler(405)
    def route_not_found(e: werkzeug.exceptions.HTTPException) -> typing.Tuple[flask.Response, int]:
        return flask.jsonify(success=False, error="Route not found"), 404

    @app.errorhandler(Exception)
    def internal_error(e: Exception) -> typing.Tuple[flask.Response, int]:
        if isinstance(e, werkzeug.exceptions.HTTPException) and (e.code or 500) < 500:
            return flask.jsonify(success=False, error=e.description), e.code
        logger.error("Server error", exc_info=e)
        return flask.jsonify(success=False, error="Internal server error"), 500


def create_app(
    settings: typing.Optional[typing.Dict] = None,
    shipment_store: typing.Optional[ShipmentStore] = None,
    event_tracker: typing.Optional[EventTracker] = None,
) -> flask.Flask:
    """
    Build the tracking API application.

    Each application owns its own shipment store and event tracker; nothing is shared between
    instances, so tests can create as many as they need.
    """
    settings = settings if settings is not None else load_server_settings()

    app = flask.Flask(__name__)
    app.config["TRACKER_SETTINGS"] = settings
    app.config["STARTED_AT"] = time.monotonic()
    app.extensions["shipment_store"] = shipment_store if shipment_store is not None else ShipmentStore()
    app.extensions["event_tracker"] = event_tracker if event_tracker is not None else EventTracker(
        max_events=settings.get("MAX_EVENTS", 100),
        active_users=settings.get("INITIAL_ACTIVE_USERS", 1),
    )

    register_routes(app)
    register_error_handlers(app)
    return app


def main() -> None:
    settings_handler.initialize()
    settings = load_server_settings()
    app = create_app(settings)
    print("[*] Starting server...")
    print(f"[+] Tracking server listening on http://{settings['HOST']}:{settings['PORT']}")
    # One request at a time: store mutations never interleave.
    app.run(host=settings["HOST"], port=settings["PORT"], debug=settings["DEBUG"], threaded=False)


if __name__ == '__main__':
    main()

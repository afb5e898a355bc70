# pubapp/routes/activity_logs.py
from flask import Blueprint, jsonify, request

from pubapp.database import get_db
from pubapp.routes.helpers import arg, json_body
from pubapp.services.activity_audit import (
    cleanup_old_activity_logs,
    get_activity_log_summary,
    get_activity_logs,
    get_activity_logs_for_reservation,
)
from pubapp.utils.exceptions import ValidationError

activity_logs_bp = Blueprint("activity_logs", __name__, url_prefix="/api/activity-logs")

TEXT_FILTERS = ("action_type", "performed_by", "performed_at_from", "performed_at_to", "guest_name", "search_term")
ID_FILTERS = ("reservation_id", "table_id", "room_id")


@activity_logs_bp.route("", methods=["GET"])
def list_logs():
    filters = {name: request.args.get(name) for name in TEXT_FILTERS if request.args.get(name)}
    for name in ID_FILTERS:
        value = arg(name, type=int)
        if value is not None:
            filters[name] = value
    limit = arg("limit", type=int) or 100
    offset = arg("offset", type=int) or 0

    with get_db() as db:
        return jsonify(get_activity_logs(db, filters, limit=min(limit, 500), offset=offset))


@activity_logs_bp.route("/summary", methods=["GET"])
def summary():
    days = arg("days", type=int) or 30
    with get_db() as db:
        return jsonify(get_activity_log_summary(db, days=days))


@activity_logs_bp.route("/<int:reservation_id>", methods=["GET"])
def for_reservation(reservation_id):
    with get_db() as db:
        return jsonify([entry.to_dict() for entry in get_activity_logs_for_reservation(db, reservation_id)])


@activity_logs_bp.route("/cleanup", methods=["POST"])
def cleanup():
    months = json_body().get("months_to_keep", 3)
    if isinstance(months, bool) or not isinstance(months, int):
        raise ValidationError({"months_to_keep": "Il numero di mesi deve essere un intero tra 1 e 12"})
    with get_db() as db:
        deleted = cleanup_old_activity_logs(db, months_to_keep=months)
        return jsonify({"deleted": deleted, "months_to_keep": months})

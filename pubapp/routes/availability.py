# pubapp/routes/availability.py
from flask import Blueprint, jsonify

from pubapp.database import get_db
from pubapp.routes.helpers import arg
from pubapp.services.availability import describe_conflicts, find_conflicts, get_room_availability
from pubapp.utils.exceptions import ValidationError
from pubapp.utils.time_model import generate_time_slots

availability_bp = Blueprint("availability", __name__, url_prefix="/api")


@availability_bp.route("/availability", methods=["GET"])
def check_availability():
    table_id = arg("table_id", "tableId", type=int)
    date_value = arg("date")
    time_value = arg("time")
    missing = {
        name: "Parametro obbligatorio"
        for name, value in (("table_id", table_id), ("date", date_value), ("time", time_value))
        if value is None
    }
    if missing:
        raise ValidationError(missing)

    with get_db() as db:
        conflicts = find_conflicts(
            db,
            table_id,
            date_value,
            time_value,
            arg("duration_hours", "durationHours"),
            exclude_id=arg("exclude_id", "excludeReservationId", type=int),
        )
        return jsonify({
            "available": not conflicts,
            "conflicts": [r.to_dict() for r in conflicts],
            "blocked_intervals": describe_conflicts(conflicts),
        })


@availability_bp.route("/rooms/<int:room_id>/availability", methods=["GET"])
def room_availability(room_id):
    date_value = arg("date")
    time_value = arg("time")
    if date_value is None or time_value is None:
        raise ValidationError({"date": "Parametri date e time obbligatori"})

    with get_db() as db:
        return jsonify(get_room_availability(
            db, room_id, date_value, time_value, arg("duration_hours", "durationHours")
        ))


@availability_bp.route("/time-slots", methods=["GET"])
def time_slots():
    return jsonify(generate_time_slots())

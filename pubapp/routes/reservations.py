# pubapp/routes/reservations.py
from flask import Blueprint, jsonify, request

from pubapp.database import get_db
from pubapp.routes.helpers import arg, client_info, json_body
from pubapp.services import booking
from pubapp.services.auto_complete import auto_complete_expired_reservations
from pubapp.services.cross_day import get_reservations_for_date
from pubapp.utils.exceptions import ValidationError
from pubapp.utils.limiter import limiter, BOOKING_CREATE_LIMIT

reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")

LIST_FILTERS = (
    "room_id", "table_id", "reservation_date", "date_from", "date_to",
    "reservation_time", "guest_name", "guest_phone", "created_by", "status",
)


def _performed_by(body: dict) -> str | None:
    return body.get("performed_by") or request.args.get("performed_by") or request.headers.get("X-Performed-By")


@reservations_bp.route("", methods=["GET"])
def list_reservations():
    with get_db() as db:
        if request.args.get("cross_day", "").lower() == "true":
            target = request.args.get("date")
            if not target:
                raise ValidationError({"date": "Parametro date obbligatorio con cross_day=true"})
            result = get_reservations_for_date(
                db,
                target,
                request.args.get("status_filter", "active"),
                table_id=arg("table_id", type=int),
            )
            return jsonify({key: [r.to_dict() for r in rows] for key, rows in result.items()})

        filters = {name: request.args.get(name) for name in LIST_FILTERS if request.args.get(name)}
        reservations = booking.get_reservations(db, filters)
        return jsonify([r.to_dict() for r in reservations])


@reservations_bp.route("/search", methods=["GET"])
def search():
    with get_db() as db:
        reservations = booking.search_reservations(db, request.args.get("q", ""))
        return jsonify([r.to_dict() for r in reservations])


@reservations_bp.route("", methods=["POST"])
@limiter.limit(BOOKING_CREATE_LIMIT)
def create():
    with get_db() as db:
        reservation = booking.create_reservation(db, json_body())
        return jsonify(reservation.to_dict()), 201


@reservations_bp.route("/<int:reservation_id>", methods=["GET"])
def detail(reservation_id):
    with get_db() as db:
        return jsonify(booking.get_reservation(db, reservation_id).to_dict())


@reservations_bp.route("/<int:reservation_id>", methods=["PUT"])
def update(reservation_id):
    with get_db() as db:
        body = json_body()
        changes = {k: v for k, v in body.items() if k != "performed_by"}
        reservation = booking.update_reservation(
            db, reservation_id, changes, performed_by=_performed_by(body), **client_info()
        )
        return jsonify(reservation.to_dict())


@reservations_bp.route("/<int:reservation_id>/complete", methods=["POST"])
def complete(reservation_id):
    with get_db() as db:
        body = json_body()
        changes = {k: v for k, v in body.items() if k != "performed_by"}
        reservation = booking.complete_reservation(
            db, reservation_id, changes=changes or None, performed_by=_performed_by(body), **client_info()
        )
        return jsonify(reservation.to_dict())


@reservations_bp.route("/<int:reservation_id>", methods=["DELETE"])
def cancel(reservation_id):
    with get_db() as db:
        body = json_body()
        reservation = booking.cancel_reservation(
            db, reservation_id, performed_by=_performed_by(body), **client_info()
        )
        return jsonify(reservation.to_dict())


@reservations_bp.route("/auto-complete", methods=["POST"])
def auto_complete():
    with get_db() as db:
        completed = auto_complete_expired_reservations(db)
        return jsonify({"completed": completed})

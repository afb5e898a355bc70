# pubapp/routes/floor_plan.py
from flask import Blueprint, jsonify, request

from pubapp.database import get_db
from pubapp.routes.helpers import json_body
from pubapp.services.floor_plan import (
    get_all_tables_with_rooms,
    get_rooms,
    get_table,
    get_tables_by_room,
    update_table_properties,
)

floor_plan_bp = Blueprint("floor_plan", __name__, url_prefix="/api")


# ─────────────────────────────────────────
# SALE
# ─────────────────────────────────────────

@floor_plan_bp.route("/rooms", methods=["GET"])
def list_rooms():
    with get_db() as db:
        return jsonify([room.to_dict() for room in get_rooms(db)])


@floor_plan_bp.route("/rooms/<int:room_id>/tables", methods=["GET"])
def room_tables(room_id):
    with get_db() as db:
        return jsonify([table.to_dict() for table in get_tables_by_room(db, room_id)])


# ─────────────────────────────────────────
# TAVOLI
# ─────────────────────────────────────────

@floor_plan_bp.route("/tables", methods=["GET"])
def list_tables():
    include_inactive = request.args.get("include_inactive", "").lower() == "true"
    with get_db() as db:
        tables = get_all_tables_with_rooms(db, include_inactive=include_inactive)
        return jsonify([table.to_dict(with_room=True) for table in tables])


@floor_plan_bp.route("/tables/<int:table_id>", methods=["GET"])
def table_detail(table_id):
    with get_db() as db:
        return jsonify(get_table(db, table_id).to_dict(with_room=True))


@floor_plan_bp.route("/tables/<int:table_id>", methods=["PUT"])
def update_table(table_id):
    with get_db() as db:
        table = update_table_properties(db, table_id, json_body())
        return jsonify(table.to_dict(with_room=True))

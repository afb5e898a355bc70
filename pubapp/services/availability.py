"""
Controllo disponibilità di un tavolo.

Replica in Python la regola dei trigger (pubapp.models.overlap_guard) per dare
all'operatore un riscontro immediato: la decisione finale resta al database.
"""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from pubapp.models.room import Room
from pubapp.models.table import Table
from pubapp.services.cross_day import get_reservations_for_date
from pubapp.utils.exceptions import NotFoundError, ValidationError
from pubapp.utils.time_model import (
    day_start,
    interval_of,
    is_valid_duration,
    parse_date,
    parse_duration,
    parse_time,
    reservation_interval,
)

logger = logging.getLogger(__name__)


def _candidate_interval(date_value, time_value, duration_hours):
    errors = {}
    try:
        reservation_date = parse_date(date_value)
    except ValueError:
        errors["date"] = "Data non valida (formato atteso YYYY-MM-DD)"
    try:
        reservation_time = parse_time(time_value)
    except ValueError:
        errors["time"] = "Orario non valido (formato atteso HH:MM)"
    try:
        duration = parse_duration(duration_hours)
        if not is_valid_duration(duration):
            errors["duration_hours"] = "La durata deve essere -1 (indefinita) o tra 0.1 e 12 ore"
    except ValueError:
        errors["duration_hours"] = "Durata non valida"
    if errors:
        raise ValidationError(errors)
    return reservation_interval(reservation_date, reservation_time, duration)


def find_conflicts(db: Session, table_id: int, date_value, time_value, duration_hours, exclude_id: int | None = None) -> list:
    """
    Prenotazioni attive del tavolo che si sovrappongono all'intervallo candidato.

    Considera le prenotazioni del giorno (più quelle del giorno prima ancora in corso)
    e, se il candidato supera la mezzanotte, quelle del giorno successivo.
    """
    candidate = _candidate_interval(date_value, time_value, duration_hours)
    target = candidate.start.date()

    existing = get_reservations_for_date(db, target, "active", table_id=table_id)["all"]
    if candidate.end > day_start(target) + timedelta(days=1):
        existing = existing + get_reservations_for_date(
            db, target + timedelta(days=1), "active", table_id=table_id
        )["same_day"]

    conflicts = []
    for reservation in existing:
        if exclude_id is not None and reservation.id == exclude_id:
            continue
        if candidate.overlaps(interval_of(reservation)):
            conflicts.append(reservation)
    return conflicts


def is_available(db: Session, table_id: int, date_value, time_value, duration_hours, exclude_id: int | None = None) -> bool:
    """True se nessuna prenotazione attiva occupa l'intervallo richiesto sul tavolo."""
    conflicts = find_conflicts(db, table_id, date_value, time_value, duration_hours, exclude_id=exclude_id)
    if conflicts:
        logger.debug(
            "Tavolo %s non disponibile il %s alle %s: %s conflitti",
            table_id, date_value, time_value, len(conflicts),
        )
    return not conflicts


def describe_conflicts(conflicts) -> list[str]:
    """Etichette degli intervalli bloccati, usate nei messaggi di conflitto."""
    return [interval_of(r).label() for r in conflicts]


def get_room_availability(db: Session, room_id: int, date_value, time_value, duration_hours=None) -> dict:
    """Disponibilità di tutti i tavoli attivi di una sala per uno stesso intervallo."""
    room = db.query(Room).filter(Room.id == room_id, Room.is_active.is_(True)).first()
    if not room:
        raise NotFoundError("Sala", room_id)

    tables = (
        db.query(Table)
        .filter(Table.room_id == room_id, Table.is_active.is_(True))
        .order_by(Table.table_number.asc())
        .all()
    )

    results = []
    for table in tables:
        conflicts = find_conflicts(db, table.id, date_value, time_value, duration_hours)
        results.append({
            "table": {
                "id": table.id,
                "table_number": table.table_number,
                "max_capacity": table.max_capacity,
            },
            "is_available": not conflicts,
            "conflicting_reservations": [r.to_dict() for r in conflicts],
        })

    return {
        "room": {"id": room.id, "name": room.name, "description": room.description},
        "tables": results,
        "available_tables": sum(1 for t in results if t["is_available"]),
        "total_tables": len(tables),
    }

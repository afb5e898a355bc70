"""
Sale e tavoli del locale: consultazione e configurazione dei tavoli.

Le prenotazioni guardano solo tavoli attivi; disattivare un tavolo non tocca
le prenotazioni già registrate.
"""
import logging

from sqlalchemy.orm import Session, joinedload

from pubapp.models.room import Room
from pubapp.models.table import Table
from pubapp.utils.exceptions import NotFoundError, ValidationError
from pubapp.utils.validators import parse_int

logger = logging.getLogger(__name__)

MIN_TABLE_CAPACITY = 1
MAX_TABLE_CAPACITY = 20

EDITABLE_TABLE_FIELDS = ("max_capacity", "is_active")


# ─────────────────────────────────────────
# SALE
# ─────────────────────────────────────────

def get_rooms(db: Session) -> list[Room]:
    return db.query(Room).filter(Room.is_active.is_(True)).order_by(Room.name.asc()).all()


def get_room(db: Session, room_id: int) -> Room:
    room = db.query(Room).filter(Room.id == room_id, Room.is_active.is_(True)).first()
    if not room:
        raise NotFoundError("Sala", room_id)
    return room


# ─────────────────────────────────────────
# TAVOLI
# ─────────────────────────────────────────

def get_tables_by_room(db: Session, room_id: int) -> list[Table]:
    """Tavoli attivi di una sala, in ordine di numero."""
    get_room(db, room_id)
    return (
        db.query(Table)
        .filter(Table.room_id == room_id, Table.is_active.is_(True))
        .order_by(Table.table_number.asc())
        .all()
    )


def get_table(db: Session, table_id: int) -> Table:
    table = (
        db.query(Table)
        .options(joinedload(Table.room))
        .filter(Table.id == table_id, Table.is_active.is_(True))
        .first()
    )
    if not table:
        raise NotFoundError("Tavolo", table_id)
    return table


def get_all_tables_with_rooms(db: Session, include_inactive: bool = False) -> list[Table]:
    """Tutti i tavoli con la loro sala, per sala e numero (i disattivati solo su richiesta)."""
    q = db.query(Table).join(Room, Table.room_id == Room.id).options(joinedload(Table.room))
    if not include_inactive:
        q = q.filter(Table.is_active.is_(True), Room.is_active.is_(True))
    return q.order_by(Room.name.asc(), Table.table_number.asc()).all()


def update_table_properties(db: Session, table_id: int, changes: dict) -> Table:
    """
    Modifica capienza e/o stato attivo di un tavolo.

    Vale anche per i tavoli disattivati, così da poterli riattivare.
    max_capacity deve essere un intero tra 1 e 20, is_active un booleano.
    """
    unknown = sorted(set(changes) - set(EDITABLE_TABLE_FIELDS))
    if unknown:
        raise ValidationError({field: "Campo non modificabile" for field in unknown})
    if not changes:
        raise ValidationError("Nessuna modifica indicata (max_capacity, is_active)")

    errors, values = {}, {}
    if "max_capacity" in changes:
        try:
            capacity = parse_int(changes["max_capacity"])
            if not MIN_TABLE_CAPACITY <= capacity <= MAX_TABLE_CAPACITY:
                errors["max_capacity"] = f"La capienza deve essere tra {MIN_TABLE_CAPACITY} e {MAX_TABLE_CAPACITY}"
            values["max_capacity"] = capacity
        except (TypeError, ValueError):
            errors["max_capacity"] = "Capienza non valida"
    if "is_active" in changes:
        if not isinstance(changes["is_active"], bool):
            errors["is_active"] = "is_active deve essere true o false"
        values["is_active"] = changes["is_active"]
    if errors:
        raise ValidationError(errors)

    table = db.query(Table).filter(Table.id == table_id).first()
    if not table:
        raise NotFoundError("Tavolo", table_id)

    for field, value in values.items():
        setattr(table, field, value)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(table)
    logger.info("Tavolo %s aggiornato: %s", table.table_number, values)
    return table

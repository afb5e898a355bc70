"""
Gestione transazionale delle prenotazioni: creazione, modifica, completamento, cancellazione.

Il controllo sovrapposizioni autorevole è nei trigger del database: qui si valida
l'input, si scrive in una transazione insieme alla voce di audit e, se il trigger
rifiuta la riga, si ritenta prima di arrendersi con TABLE_UNAVAILABLE.
"""
import logging
from datetime import datetime
from time import sleep

from sqlalchemy import or_
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from pubapp.models.overlap_guard import OVERLAP_ERROR_MARKER
from pubapp.models.reservation import Reservation
from pubapp.models.table import Table
from pubapp.services.activity_audit import record_activity, snapshot_reservation
from pubapp.services.availability import describe_conflicts, find_conflicts
from pubapp.utils.exceptions import BookingError, ConflictError, NotFoundError, StateError, ValidationError
from pubapp.utils.time_model import (
    MIN_DURATION_HOURS,
    elapsed_hours,
    format_duration_display,
    is_valid_duration,
    is_valid_slot,
    parse_date,
    parse_duration,
    parse_time,
    round_hours,
    start_of,
)
from pubapp.utils.validators import parse_int

logger = logging.getLogger(__name__)

MAX_BOOKING_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 0.1

EDITABLE_FIELDS = (
    "table_id",
    "guest_name",
    "guest_phone",
    "party_size",
    "reservation_date",
    "reservation_time",
    "duration_hours",
    "notes",
)


# ---------------------------
# Helpers
# ---------------------------

def _is_overlap_violation(exc: DBAPIError) -> bool:
    return OVERLAP_ERROR_MARKER in str(getattr(exc, "orig", exc))


def _clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_fields(data: dict) -> dict:
    """
    Converte l'input (JSON o Python) nei tipi del modello, raccogliendo
    gli errori per campo. Considera solo i campi presenti in `data`.
    """
    values, errors = {}, {}

    if "table_id" in data:
        try:
            values["table_id"] = parse_int(data["table_id"])
        except (TypeError, ValueError):
            errors["table_id"] = "Tavolo non valido"

    if "guest_name" in data:
        name = _clean_text(data["guest_name"])
        if not name:
            errors["guest_name"] = "Il nome del cliente è obbligatorio"
        elif len(name) > 255:
            errors["guest_name"] = "Nome troppo lungo (max 255 caratteri)"
        values["guest_name"] = name

    if "guest_phone" in data:
        phone = _clean_text(data["guest_phone"])
        if phone and len(phone) > 20:
            errors["guest_phone"] = "Telefono troppo lungo (max 20 caratteri)"
        values["guest_phone"] = phone

    if "party_size" in data:
        try:
            party_size = parse_int(data["party_size"])
            if party_size <= 0:
                errors["party_size"] = "Il numero di persone deve essere positivo"
            values["party_size"] = party_size
        except (TypeError, ValueError):
            errors["party_size"] = "Numero di persone non valido"

    if "reservation_date" in data:
        try:
            values["reservation_date"] = parse_date(data["reservation_date"])
        except (TypeError, ValueError):
            errors["reservation_date"] = "Data non valida (formato atteso YYYY-MM-DD)"

    if "reservation_time" in data:
        try:
            reservation_time = parse_time(data["reservation_time"])
            if not is_valid_slot(reservation_time):
                errors["reservation_time"] = "Orario non valido: slot da 15 minuti tra le 12:00 e le 01:45"
            values["reservation_time"] = reservation_time
        except (TypeError, ValueError):
            errors["reservation_time"] = "Orario non valido (formato atteso HH:MM)"

    if "duration_hours" in data:
        try:
            duration = parse_duration(data["duration_hours"])
            if not is_valid_duration(duration):
                errors["duration_hours"] = "La durata deve essere -1 (indefinita) o tra 0.1 e 12 ore"
            values["duration_hours"] = duration
        except ValueError:
            errors["duration_hours"] = "Durata non valida"

    if "notes" in data:
        values["notes"] = _clean_text(data["notes"])

    if "created_by" in data:
        values["created_by"] = _clean_text(data["created_by"])

    if errors:
        raise ValidationError(errors)
    return values


def _check_table_and_date(db: Session, table_id: int, party_size: int, reservation_date, today, check_past: bool) -> Table:
    errors = {}
    table = db.query(Table).filter(Table.id == table_id).first()
    if not table or not table.is_active:
        errors["table_id"] = f"Tavolo {table_id} inesistente o non attivo"
    elif party_size > table.max_capacity:
        errors["party_size"] = (
            f"Troppi coperti per il tavolo {table.table_number} (max {table.max_capacity})"
        )
    if check_past and reservation_date < today:
        errors["reservation_date"] = "Non è possibile prenotare in una data passata"
    if errors:
        raise ValidationError(errors)
    return table


def _lock_table(db: Session, table_id: int) -> Table:
    """
    SELECT ... FOR UPDATE sulla riga del tavolo: le scritture concorrenti sullo
    stesso tavolo si serializzano, così il trigger vede le righe già committate.
    """
    with db.no_autoflush:
        return db.query(Table).filter(Table.id == table_id).with_for_update().one()


def _load(db: Session, reservation_id: int) -> Reservation:
    reservation = db.query(Reservation).filter(Reservation.id == reservation_id).first()
    if not reservation:
        raise NotFoundError("Prenotazione", reservation_id)
    return reservation


def _apply_edits(db: Session, reservation: Reservation, changes: dict, today) -> None:
    if "status" in changes:
        raise ValidationError({"status": "Lo stato si modifica solo completando o cancellando la prenotazione"})
    values = _parse_fields({k: v for k, v in changes.items() if k in EDITABLE_FIELDS})

    merged_date = values.get("reservation_date", reservation.reservation_date)
    _check_table_and_date(
        db,
        values.get("table_id", reservation.table_id),
        values.get("party_size", reservation.party_size),
        merged_date,
        today,
        check_past="reservation_date" in values and merged_date != reservation.reservation_date,
    )
    for field, value in values.items():
        setattr(reservation, field, value)


def _commit_with_retry(db: Session, apply, action: str) -> Reservation:
    """
    Esegue `apply()` (che prepara la mutazione e la voce di audit nella sessione)
    e fa commit. Una violazione del trigger anti-sovrapposizione viene ritentata
    fino a MAX_BOOKING_ATTEMPTS volte, poi diventa ConflictError. Ogni altro errore
    del database risale subito.
    """
    attempt = 0
    while True:
        attempt += 1
        target = None
        try:
            reservation = apply()
            # Letti prima del commit: un flush fallito fa scadere gli oggetti della sessione
            target = (
                reservation.table_id,
                reservation.reservation_date,
                reservation.reservation_time,
                reservation.duration_hours,
                reservation.id,
            )
            db.commit()
            db.refresh(reservation)
            return reservation
        except BookingError:
            db.rollback()
            raise
        except DBAPIError as exc:
            db.rollback()
            if not _is_overlap_violation(exc) or target is None:
                raise
            if attempt < MAX_BOOKING_ATTEMPTS:
                logger.warning(
                    "%s: tavolo %s occupato il %s alle %s, tentativo %s/%s",
                    action, target[0], target[1], target[2], attempt, MAX_BOOKING_ATTEMPTS,
                )
                sleep(RETRY_BACKOFF_SECONDS * attempt)
                continue

            table_id, reservation_date, reservation_time, duration, exclude_id = target
            blocked = describe_conflicts(
                find_conflicts(db, table_id, reservation_date, reservation_time, duration, exclude_id=exclude_id)
            )
            raise ConflictError(blocked=blocked, table_id=table_id, action=action) from exc


# ---------------------------
# Scrittura
# ---------------------------

def create_reservation(db: Session, data: dict, now: datetime | None = None) -> Reservation:
    """
    Crea una prenotazione attiva.

    Campi obbligatori: table_id, guest_name, party_size, reservation_date, reservation_time.
    duration_hours è opzionale (default 2h, -1 = indefinita).
    """
    missing = {
        field: "Campo obbligatorio"
        for field in ("table_id", "guest_name", "party_size", "reservation_date", "reservation_time")
        if data.get(field) in (None, "")
    }
    if missing:
        raise ValidationError(missing)

    values = _parse_fields({**data, "duration_hours": data.get("duration_hours")})
    today = (now or datetime.now()).date()
    _check_table_and_date(db, values["table_id"], values["party_size"], values["reservation_date"], today, check_past=True)

    def apply():
        _lock_table(db, values["table_id"])
        reservation = Reservation(status="active", **values)
        db.add(reservation)
        return reservation

    reservation = _commit_with_retry(db, apply, "Creazione prenotazione")
    logger.info(
        "Prenotazione %s creata: tavolo %s, %s %s, %s persone",
        reservation.id, reservation.table_id, reservation.reservation_date,
        reservation.reservation_time, reservation.party_size,
    )
    return reservation


def update_reservation(db: Session, reservation_id: int, changes: dict, performed_by: str | None = None,
                       ip_address: str | None = None, user_agent: str | None = None,
                       now: datetime | None = None) -> Reservation:
    """Modifica i campi di una prenotazione attiva o completata (lo stato non si tocca qui)."""
    today = (now or datetime.now()).date()

    def apply():
        reservation = _load(db, reservation_id)
        if reservation.status == "cancelled":
            raise StateError("Una prenotazione cancellata non può essere modificata", reservation_id=reservation_id)
        old = snapshot_reservation(reservation)
        _apply_edits(db, reservation, changes, today)
        _lock_table(db, reservation.table_id)
        record_activity(
            db, reservation, old,
            performed_by=performed_by, ip_address=ip_address, user_agent=user_agent,
        )
        return reservation

    reservation = _commit_with_retry(db, apply, "Modifica prenotazione")
    logger.info("Prenotazione %s modificata da %s", reservation_id, performed_by or "sconosciuto")
    return reservation


def complete_reservation(db: Session, reservation_id: int, changes: dict | None = None, now: datetime | None = None,
                         performed_by: str | None = None, ip_address: str | None = None,
                         user_agent: str | None = None) -> Reservation:
    """
    Chiude una prenotazione attiva.

    Per le indefinite la durata diventa il tempo trascorso dall'inizio, arrotondato
    a un decimale (minimo 0.1h, nessun tetto). Le finite mantengono la loro durata.
    Eventuali `changes` vengono applicati e registrati come una normale modifica.
    """
    now = now or datetime.now()

    def apply():
        reservation = _load(db, reservation_id)
        if reservation.status != "active":
            raise StateError(
                f"Solo le prenotazioni attive possono essere completate (stato: {reservation.status})",
                reservation_id=reservation_id,
            )
        old = snapshot_reservation(reservation)
        if changes:
            _apply_edits(db, reservation, changes, now.date())
            _lock_table(db, reservation.table_id)

        # Una durata indicata dall'operatore vince sul ricalcolo ed è registrata
        recomputed = reservation.is_indefinite
        if recomputed:
            elapsed = elapsed_hours(start_of(reservation.reservation_date, reservation.reservation_time), now)
            if elapsed <= 0:
                raise StateError("La prenotazione non è ancora iniziata", reservation_id=reservation_id)
            reservation.duration_hours = max(MIN_DURATION_HOURS, round_hours(elapsed))

        reservation.status = "completed"
        record_activity(
            db, reservation, old, explicit_completion=True, duration_recomputed=recomputed,
            performed_by=performed_by, ip_address=ip_address, user_agent=user_agent,
        )
        return reservation

    reservation = _commit_with_retry(db, apply, "Completamento prenotazione")
    logger.info(
        "Prenotazione %s completata (durata %s)",
        reservation_id, format_duration_display(reservation.duration_hours),
    )
    return reservation


def cancel_reservation(db: Session, reservation_id: int, performed_by: str | None = None,
                       ip_address: str | None = None, user_agent: str | None = None) -> Reservation:
    """Cancellazione logica: la riga resta con status 'cancelled'."""
    reservation = _load(db, reservation_id)
    if reservation.status != "active":
        raise StateError(
            f"Solo le prenotazioni attive possono essere cancellate (stato: {reservation.status})",
            reservation_id=reservation_id,
        )
    old = snapshot_reservation(reservation)
    reservation.status = "cancelled"
    try:
        record_activity(
            db, reservation, old,
            performed_by=performed_by, ip_address=ip_address, user_agent=user_agent,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(reservation)
    logger.info("Prenotazione %s cancellata da %s", reservation_id, performed_by or "sconosciuto")
    return reservation


# ---------------------------
# Lettura
# ---------------------------

def get_reservation(db: Session, reservation_id: int) -> Reservation:
    return _load(db, reservation_id)


def get_reservations(db: Session, filters: dict | None = None) -> list[Reservation]:
    """
    Elenco filtrato. Filtri: room_id, table_id, reservation_date, date_from, date_to,
    reservation_time, guest_name, guest_phone, created_by, status ('active' di default, 'all' per tutti).
    """
    filters = filters or {}
    q = db.query(Reservation)

    status = filters.get("status") or "active"
    if status != "all":
        q = q.filter(Reservation.status == status)
    if filters.get("room_id"):
        q = q.join(Table, Reservation.table_id == Table.id).filter(Table.room_id == filters["room_id"])
    if filters.get("table_id"):
        q = q.filter(Reservation.table_id == filters["table_id"])

    try:
        if filters.get("reservation_date"):
            q = q.filter(Reservation.reservation_date == parse_date(filters["reservation_date"]))
        if filters.get("date_from"):
            q = q.filter(Reservation.reservation_date >= parse_date(filters["date_from"]))
        if filters.get("date_to"):
            q = q.filter(Reservation.reservation_date <= parse_date(filters["date_to"]))
        if filters.get("reservation_time"):
            q = q.filter(Reservation.reservation_time == parse_time(filters["reservation_time"]))
    except ValueError as exc:
        raise ValidationError({"filters": str(exc)})

    if filters.get("guest_name"):
        q = q.filter(Reservation.guest_name.ilike(f"%{filters['guest_name']}%"))
    if filters.get("guest_phone"):
        q = q.filter(Reservation.guest_phone.ilike(f"%{filters['guest_phone']}%"))
    if filters.get("created_by"):
        q = q.filter(Reservation.created_by.ilike(f"%{filters['created_by']}%"))

    return q.order_by(
        Reservation.reservation_date.asc(),
        Reservation.reservation_time.asc(),
        Reservation.id.asc(),
    ).all()


def search_reservations(db: Session, term: str, limit: int = 50) -> list[Reservation]:
    """Prenotazioni attive il cui nome o telefono contiene `term`."""
    term = (term or "").strip()
    if not term:
        return []
    like = f"%{term}%"
    return (
        db.query(Reservation)
        .filter(
            Reservation.status == "active",
            or_(Reservation.guest_name.ilike(like), Reservation.guest_phone.ilike(like)),
        )
        .order_by(Reservation.reservation_date.desc(), Reservation.reservation_time.asc())
        .limit(limit)
        .all()
    )

"""
Registro attività delle prenotazioni.

Decide quali modifiche producono una voce di audit e con quale contenuto:

- si registrano solo i campi davvero cambiati, dopo la normalizzazione
  (date 'YYYY-MM-DD', orari 'HH:MM', durata a un decimale con -1 come sentinella);
- il completamento esplicito (status active -> completed + la durata ricalcolata)
  non viene registrato, gli altri campi modificati nella stessa chiamata sì;
- la cancellazione produce sempre una voce 'cancelled' con lo snapshot completo;
- le modifiche dello scheduler di auto-completamento non passano mai di qui.
"""
import calendar
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, or_, String
from sqlalchemy.orm import Session

from pubapp.models.activity_log import ActivityLogEntry, ACTION_TYPES
from pubapp.models.reservation import Reservation
from pubapp.models.table import Table
from pubapp.models.room import Room
from pubapp.utils.exceptions import ValidationError
from pubapp.utils.time_model import format_date, format_time, normalize_duration

logger = logging.getLogger(__name__)

AUDITED_FIELDS = (
    "table_id",
    "guest_name",
    "guest_phone",
    "party_size",
    "reservation_date",
    "reservation_time",
    "duration_hours",
    "notes",
    "status",
)

# Campi testuali opzionali: None e "" sono equivalenti
_OPTIONAL_TEXT_FIELDS = ("guest_phone", "notes")


# ─────────────────────────────────────────
# SNAPSHOT E DIFF
# ─────────────────────────────────────────

def normalize_field(field: str, value):
    if field == "reservation_date":
        return format_date(value)
    if field == "reservation_time":
        return format_time(value)
    if field == "duration_hours":
        return normalize_duration(value)
    if field in _OPTIONAL_TEXT_FIELDS:
        return value or ""
    return value


def snapshot_reservation(reservation: Reservation) -> dict:
    """Snapshot completo e serializzabile in JSON della prenotazione."""
    snapshot = {"id": reservation.id, "created_by": reservation.created_by}
    for field in AUDITED_FIELDS:
        snapshot[field] = normalize_field(field, getattr(reservation, field))
    return snapshot


def compute_field_changes(old: dict, new: dict) -> dict:
    """{campo: {"old": ..., "new": ...}} per i soli campi realmente diversi."""
    changes = {}
    for field in AUDITED_FIELDS:
        if field not in new:
            continue
        old_value = normalize_field(field, old.get(field))
        new_value = normalize_field(field, new.get(field))
        if old_value != new_value:
            changes[field] = {"old": old_value, "new": new_value}
    return changes


def apply_audit_policy(changes: dict, explicit_completion: bool = False, duration_recomputed: bool = False) -> dict:
    """
    Toglie dal diff la coppia status/durata prodotta da un completamento esplicito.
    La durata sparisce solo se l'ha ricalcolata il completamento: una durata
    scritta dall'operatore resta nel registro anche su una prenotazione indefinita.
    """
    status_change = changes.get("status")
    if not (explicit_completion and status_change == {"old": "active", "new": "completed"}):
        return dict(changes)
    filtered = {k: v for k, v in changes.items() if k != "status"}
    if duration_recomputed:
        filtered.pop("duration_hours", None)
    return filtered


def classify_action(changes: dict) -> str:
    status_change = changes.get("status")
    if status_change and status_change["new"] == "cancelled":
        return "cancelled"
    return "updated"


# ─────────────────────────────────────────
# SCRITTURA
# ─────────────────────────────────────────

def log_reservation_activity(db: Session, *, reservation_id: int, action_type: str, field_changes: dict | None,
                             snapshot: dict, performed_by: str | None = None, notes: str | None = None,
                             ip_address: str | None = None, user_agent: str | None = None,
                             performed_at: datetime | None = None) -> ActivityLogEntry:
    entry = ActivityLogEntry(
        reservation_id=reservation_id,
        action_type=action_type,
        field_changes=field_changes,
        reservation_snapshot=snapshot,
        performed_by=performed_by,
        performed_at=performed_at or datetime.now(),
        notes=notes,
        ip_address=ip_address,
        user_agent=(user_agent or None) and user_agent[:255],
    )
    db.add(entry)
    # commit delegato al chiamante: mutazione e audit sono un'unica transazione
    return entry


def record_activity(db: Session, reservation: Reservation, old_snapshot: dict, *, explicit_completion: bool = False,
                    duration_recomputed: bool = False, **log_fields) -> ActivityLogEntry | None:
    """
    Confronta lo stato precedente con quello attuale della prenotazione e, se resta
    qualcosa da registrare dopo la policy, aggiunge la voce alla sessione.
    """
    new_snapshot = snapshot_reservation(reservation)
    changes = apply_audit_policy(
        compute_field_changes(old_snapshot, new_snapshot), explicit_completion, duration_recomputed
    )
    if not changes:
        return None
    return log_reservation_activity(
        db,
        reservation_id=reservation.id,
        action_type=classify_action(changes),
        field_changes=changes,
        snapshot=new_snapshot,
        **log_fields,
    )


# ─────────────────────────────────────────
# LETTURA
# ─────────────────────────────────────────

def _snapshot_text(key: str):
    return func.json_extract(ActivityLogEntry.reservation_snapshot, f"$.{key}").cast(String)


def get_activity_logs(db: Session, filters: dict | None = None, limit: int = 100, offset: int = 0) -> list[dict]:
    filters = filters or {}
    q = (
        db.query(ActivityLogEntry, Table.table_number, Room.name)
        .outerjoin(Reservation, ActivityLogEntry.reservation_id == Reservation.id)
        .outerjoin(Table, Reservation.table_id == Table.id)
        .outerjoin(Room, Table.room_id == Room.id)
    )

    if filters.get("reservation_id"):
        q = q.filter(ActivityLogEntry.reservation_id == filters["reservation_id"])
    if filters.get("action_type"):
        q = q.filter(ActivityLogEntry.action_type == filters["action_type"])
    if filters.get("performed_by"):
        q = q.filter(ActivityLogEntry.performed_by.ilike(f"%{filters['performed_by']}%"))
    if filters.get("performed_at_from"):
        q = q.filter(ActivityLogEntry.performed_at >= filters["performed_at_from"])
    if filters.get("performed_at_to"):
        q = q.filter(ActivityLogEntry.performed_at <= filters["performed_at_to"])
    if filters.get("table_id"):
        q = q.filter(Table.id == filters["table_id"])
    if filters.get("room_id"):
        q = q.filter(Room.id == filters["room_id"])
    if filters.get("guest_name"):
        q = q.filter(_snapshot_text("guest_name").ilike(f"%{filters['guest_name']}%"))
    if filters.get("search_term"):
        term = f"%{filters['search_term']}%"
        q = q.filter(or_(
            _snapshot_text("guest_name").ilike(term),
            _snapshot_text("guest_phone").ilike(term),
            ActivityLogEntry.performed_by.ilike(term),
            Table.table_number.ilike(term),
            Room.name.ilike(term),
        ))

    rows = (
        q.order_by(ActivityLogEntry.performed_at.desc(), ActivityLogEntry.id.desc())
         .offset(offset)
         .limit(limit)
         .all()
    )

    # Enrich: numero tavolo e sala correnti
    result = []
    for entry, table_number, room_name in rows:
        data = entry.to_dict()
        data["table_number"] = table_number
        data["room_name"] = room_name
        result.append(data)
    return result


def get_activity_logs_for_reservation(db: Session, reservation_id: int) -> list[ActivityLogEntry]:
    return (
        db.query(ActivityLogEntry)
        .filter(ActivityLogEntry.reservation_id == reservation_id)
        .order_by(ActivityLogEntry.performed_at.desc(), ActivityLogEntry.id.desc())
        .all()
    )


def get_activity_log_summary(db: Session, days: int = 30, now: datetime | None = None) -> dict:
    cutoff = (now or datetime.now()) - timedelta(days=days)

    by_type = dict(
        db.query(ActivityLogEntry.action_type, func.count(ActivityLogEntry.id))
        .filter(ActivityLogEntry.performed_at >= cutoff)
        .group_by(ActivityLogEntry.action_type)
        .all()
    )

    by_user = (
        db.query(ActivityLogEntry.performed_by, func.count(ActivityLogEntry.id).label("count"))
        .filter(ActivityLogEntry.performed_at >= cutoff)
        .group_by(ActivityLogEntry.performed_by)
        .order_by(func.count(ActivityLogEntry.id).desc())
        .limit(10)
        .all()
    )

    return {
        "total_activities": sum(by_type.values()),
        "activities_by_type": {action: by_type.get(action, 0) for action in ACTION_TYPES},
        "activities_by_user": [{"user": user or "Sconosciuto", "count": count} for user, count in by_user],
        "recent_activities": get_activity_logs(db, limit=10),
    }


def _months_before(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def cleanup_old_activity_logs(db: Session, months_to_keep: int = 3, now: datetime | None = None) -> int:
    """Elimina le voci più vecchie di `months_to_keep` mesi (1-12). Ritorna il numero di voci eliminate."""
    if not isinstance(months_to_keep, int) or not 1 <= months_to_keep <= 12:
        raise ValidationError({"months_to_keep": "Il numero di mesi deve essere tra 1 e 12"})

    cutoff = _months_before(now or datetime.now(), months_to_keep)
    try:
        deleted = (
            db.query(ActivityLogEntry)
            .filter(ActivityLogEntry.performed_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Pulizia log attività: %s voci eliminate (più vecchie di %s)", deleted, cutoff)
    return deleted

"""
Risoluzione delle prenotazioni "a cavallo" della mezzanotte.

Una prenotazione del giorno prima può occupare ancora un tavolo nella data richiesta
(es. 26/08 alle 22:00 per 4 ore -> fino alle 02:00 del 27/08). Questa funzione è
l'unica sorgente usata sia per la piantina sia per i controlli di disponibilità,
così le due viste non divergono.
"""
from datetime import timedelta

from sqlalchemy.orm import Session

from pubapp.models.reservation import Reservation, RESERVATION_STATUSES
from pubapp.utils.exceptions import ValidationError
from pubapp.utils.time_model import (
    crosses_midnight,
    day_start,
    end_of,
    indefinite_end,
    is_indefinite,
    parse_date,
)

STATUS_FILTERS = RESERVATION_STATUSES + ("all",)


def _base_query(db: Session, status_filter: str, table_id: int | None):
    q = db.query(Reservation)
    if status_filter != "all":
        q = q.filter(Reservation.status == status_filter)
    if table_id is not None:
        q = q.filter(Reservation.table_id == table_id)
    return q


def is_active_on_date(reservation, target_date) -> bool:
    """La prenotazione (del giorno prima) occupa ancora `target_date`?"""
    midnight = day_start(target_date)
    if is_indefinite(reservation.duration_hours):
        return midnight < indefinite_end(reservation.reservation_date)
    return end_of(reservation.reservation_date, reservation.reservation_time, reservation.duration_hours) > midnight


def get_reservations_for_date(db: Session, target_date, status_filter: str = "active", table_id: int | None = None) -> dict:
    """
    Prenotazioni che occupano `target_date`.

    Returns:
        dict con chiavi:
            same_day: prenotazioni con reservation_date = target_date
            previous_day: prenotazioni del giorno prima ancora in corso dopo la mezzanotte
            all: same_day + previous_day
    """
    if status_filter not in STATUS_FILTERS:
        raise ValidationError({"status_filter": f"Filtro stato non valido: {status_filter}"})
    try:
        target = parse_date(target_date)
    except ValueError:
        raise ValidationError({"date": f"Data non valida: {target_date} (formato atteso YYYY-MM-DD)"})
    previous = target - timedelta(days=1)

    same_day = (
        _base_query(db, status_filter, table_id)
        .filter(Reservation.reservation_date == target)
        .order_by(Reservation.reservation_time.asc(), Reservation.id.asc())
        .all()
    )

    # Candidati del giorno prima: il filtro su mezzanotte (inizio + durata > 24h) è in Python,
    # identico per ogni dialetto
    candidates = (
        _base_query(db, status_filter, table_id)
        .filter(Reservation.reservation_date == previous)
        .order_by(Reservation.reservation_time.asc(), Reservation.id.asc())
        .all()
    )
    previous_day = [
        r for r in candidates
        if crosses_midnight(r.reservation_time, r.duration_hours) and is_active_on_date(r, target)
    ]

    return {
        "same_day": same_day,
        "previous_day": previous_day,
        "all": same_day + previous_day,
    }

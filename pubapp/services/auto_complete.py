"""
Completamento automatico delle prenotazioni scadute.

Viene chiamata periodicamente (endpoint, comando CLI `flask auto-complete` o
il controllo prima delle richieste) e non scrive mai nel registro attività.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pubapp.database import get_db
from pubapp.models.reservation import Reservation
from pubapp.utils.time_model import (
    AUTO_COMPLETE_CAP_HOURS,
    INDEFINITE_DURATION,
    MIN_DURATION_HOURS,
    elapsed_hours,
    end_of,
    round_hours,
    start_of,
)

logger = logging.getLogger(__name__)


def _complete_row(db: Session, reservation_id: int, **values) -> bool:
    """
    UPDATE condizionato sullo stato: se un'altra richiesta ha già chiuso o
    cancellato la prenotazione la riga non viene toccata.
    """
    try:
        result = db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == "active")
            .values(status="completed", **values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Auto-completamento fallito per la prenotazione %s", reservation_id)
        return False


def _active_started_before(db: Session, now: datetime, indefinite: bool) -> list[tuple]:
    duration_filter = (
        Reservation.duration_hours == INDEFINITE_DURATION if indefinite
        else Reservation.duration_hours != INDEFINITE_DURATION
    )
    return (
        db.query(Reservation.id, Reservation.reservation_date, Reservation.reservation_time, Reservation.duration_hours)
        .filter(
            Reservation.status == "active",
            duration_filter,
            Reservation.reservation_date <= now.date(),
        )
        .all()
    )


def complete_finite(db: Session, now: datetime) -> int:
    """Prenotazioni a durata definita già terminate: status -> completed, durata invariata."""
    count = 0
    for reservation_id, reservation_date, reservation_time, duration in _active_started_before(db, now, indefinite=False):
        if end_of(reservation_date, reservation_time, duration) < now:
            if _complete_row(db, reservation_id):
                count += 1
    return count


def complete_indefinite(db: Session, now: datetime) -> int:
    """Indefinite iniziate da più di 6 ore: durata = ore trascorse, tra 0.1 e 6."""
    count = 0
    cap = timedelta(hours=AUTO_COMPLETE_CAP_HOURS)
    for reservation_id, reservation_date, reservation_time, _ in _active_started_before(db, now, indefinite=True):
        start = start_of(reservation_date, reservation_time)
        if start + cap >= now:
            continue
        billed = min(AUTO_COMPLETE_CAP_HOURS, max(MIN_DURATION_HOURS, round_hours(elapsed_hours(start, now))))
        if _complete_row(db, reservation_id, duration_hours=billed):
            count += 1
    return count


def auto_complete_expired_reservations(db: Session | None = None, now: datetime | None = None) -> int:
    """
    Completa tutte le prenotazioni scadute e ritorna quante ne ha chiuse.
    Idempotente: una seconda chiamata immediata ritorna 0.
    """
    if db is None:
        with get_db() as own_db:
            return auto_complete_expired_reservations(own_db, now)

    now = now or datetime.now()
    finite = complete_finite(db, now)
    indefinite = complete_indefinite(db, now)

    total = finite + indefinite
    if total:
        logger.info("Auto-completamento: %s prenotazioni chiuse (%s definite, %s indefinite)", total, finite, indefinite)
    return total

"""
Vincolo lato database contro le prenotazioni sovrapposte.

È la fonte unica di verità per i conflitti: i trigger BEFORE INSERT / BEFORE UPDATE
rifiutano qualsiasi riga 'active' il cui intervallo [inizio, fine) si sovrappone a
un'altra prenotazione attiva sullo stesso tavolo.

Regola dell'intervallo (identica a pubapp.utils.time_model):
    - inizio = reservation_date + reservation_time
    - fine   = inizio + duration_hours            (durata finita, può superare la mezzanotte)
    - fine   = 06:00 del giorno successivo        (durata indefinita, -1)
    - conflitto se inizio_nuova < fine_esistente AND inizio_esistente < fine_nuova

Vengono confrontate le prenotazioni del giorno precedente, dello stesso giorno e del
giorno successivo, così l'esito non dipende dall'ordine di inserimento.
"""
import logging

from sqlalchemy import event

from pubapp.models.reservation import Reservation

logger = logging.getLogger(__name__)

# Marker letto da pubapp.services.booking per classificare l'errore
OVERLAP_ERROR_MARKER = "TABLE_UNAVAILABLE"

TRIGGER_NAMES = ("trg_reservations_no_overlap_insert", "trg_reservations_no_overlap_update")


# ─────────────────────────────────────────
# SQLITE
# ─────────────────────────────────────────

def _sqlite_start(alias: str) -> str:
    # reservation_time è salvato come 'HH:MM:SS.ffffff': bastano ore e minuti
    return (
        f"CAST(strftime('%s', {alias}.reservation_date || ' ' || substr({alias}.reservation_time, 1, 5)) AS INTEGER)"
    )


def _sqlite_end(alias: str) -> str:
    return (
        f"(CASE WHEN {alias}.duration_hours = -1 "
        f"THEN CAST(strftime('%s', date({alias}.reservation_date, '+1 day') || ' 06:00') AS INTEGER) "
        f"ELSE {_sqlite_start(alias)} + CAST(ROUND({alias}.duration_hours * 3600) AS INTEGER) END)"
    )


def _sqlite_trigger(name: str, event_name: str) -> str:
    return f"""
CREATE TRIGGER {name}
BEFORE {event_name} ON reservations
FOR EACH ROW
WHEN NEW.status = 'active'
BEGIN
    SELECT RAISE(ABORT, '{OVERLAP_ERROR_MARKER}')
    WHERE EXISTS (
        SELECT 1 FROM reservations AS r
        WHERE r.table_id = NEW.table_id
          AND r.status = 'active'
          AND r.id IS NOT NEW.id
          AND r.reservation_date BETWEEN date(NEW.reservation_date, '-1 day')
                                     AND date(NEW.reservation_date, '+1 day')
          AND {_sqlite_start('NEW')} < {_sqlite_end('r')}
          AND {_sqlite_start('r')} < {_sqlite_end('NEW')}
    );
END
"""


# ─────────────────────────────────────────
# MYSQL
# ─────────────────────────────────────────

def _mysql_start(alias: str) -> str:
    return f"TIMESTAMP({alias}.reservation_date, {alias}.reservation_time)"


def _mysql_end(alias: str) -> str:
    return (
        f"(CASE WHEN {alias}.duration_hours = -1 "
        f"THEN TIMESTAMP(DATE_ADD({alias}.reservation_date, INTERVAL 1 DAY), '06:00:00') "
        f"ELSE TIMESTAMPADD(SECOND, ROUND({alias}.duration_hours * 3600), {_mysql_start(alias)}) END)"
    )


def _mysql_trigger(name: str, event_name: str) -> str:
    return f"""
CREATE TRIGGER {name}
BEFORE {event_name} ON reservations
FOR EACH ROW
BEGIN
    IF NEW.status = 'active' AND EXISTS (
        SELECT 1 FROM reservations AS r
        WHERE r.table_id = NEW.table_id
          AND r.status = 'active'
          AND (NEW.id IS NULL OR r.id <> NEW.id)
          AND r.reservation_date BETWEEN DATE_SUB(NEW.reservation_date, INTERVAL 1 DAY)
                                     AND DATE_ADD(NEW.reservation_date, INTERVAL 1 DAY)
          AND {_mysql_start('NEW')} < {_mysql_end('r')}
          AND {_mysql_start('r')} < {_mysql_end('NEW')}
    ) THEN
        SIGNAL SQLSTATE '45000' SET MESSAGE_TEXT = '{OVERLAP_ERROR_MARKER}';
    END IF;
END
"""


_BUILDERS = {
    "sqlite": _sqlite_trigger,
    "mysql": _mysql_trigger,
}


def overlap_guard_statements(dialect_name: str) -> list[str]:
    """DDL (drop + create) dei trigger per il dialetto indicato; lista vuota se non supportato."""
    builder = _BUILDERS.get(dialect_name)
    if builder is None:
        return []
    statements = []
    for name, event_name in zip(TRIGGER_NAMES, ("INSERT", "UPDATE")):
        statements.append(f"DROP TRIGGER IF EXISTS {name}")
        statements.append(builder(name, event_name))
    return statements


def install_overlap_guard(connection) -> bool:
    """
    Installa (o reinstalla) i trigger anti-sovrapposizione.

    Idempotente: può essere chiamata a ogni avvio dell'app.
    Ritorna False se il dialetto non è supportato.
    """
    statements = overlap_guard_statements(connection.dialect.name)
    if not statements:
        logger.warning(
            "Dialetto %s non supportato: nessun vincolo anti-sovrapposizione installato",
            connection.dialect.name,
        )
        return False
    for statement in statements:
        # exec_driver_sql: il DDL contiene '%s' e ':' che text() interpreterebbe
        connection.exec_driver_sql(statement)
    return True


@event.listens_for(Reservation.__table__, "after_create")
def _install_after_create(target, connection, **kw):
    install_overlap_guard(connection)

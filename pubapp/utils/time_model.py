"""
Modello temporale delle prenotazioni.

Ogni prenotazione è un intervallo semiaperto [inizio, fine) ancorato a data + ora locale;
la fine può cadere nel giorno di calendario successivo. Le prenotazioni a durata
indefinita (-1) non hanno una fine propria: quando serve, la fine convenzionale è
alle 06:00 del giorno dopo la data della prenotazione.

Questo modulo è puro (niente database) ed è la controparte Python dei trigger in
pubapp.models.overlap_guard: le due regole devono restare identiche.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP

# ─────────────────────────────────────────
# COSTANTI
# ─────────────────────────────────────────

OPENING_TIME = time(12, 0)
CLOSING_TIME = time(2, 0)  # del giorno successivo
SLOT_MINUTES = 15

INDEFINITE_DURATION = -1
INDEFINITE_CUTOFF = time(6, 0)  # fine convenzionale delle indefinite, giorno dopo
DEFAULT_DURATION_HOURS = 2.0
MIN_DURATION_HOURS = 0.1
MAX_DURATION_HOURS = 12.0
AUTO_COMPLETE_CAP_HOURS = 6.0

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


@dataclass(frozen=True)
class Interval:
    """Intervallo semiaperto [start, end)."""
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def label(self) -> str:
        """Etichetta leggibile, es. '2025-08-26 22:00–02:00 (+1)'."""
        suffix = ""
        days = (self.end.date() - self.start.date()).days
        if days > 0:
            suffix = f" (+{days})"
        return f"{self.start.strftime(DATE_FORMAT)} {self.start.strftime(TIME_FORMAT)}–{self.end.strftime(TIME_FORMAT)}{suffix}"


# ─────────────────────────────────────────
# SLOT E FINESTRA OPERATIVA
# ─────────────────────────────────────────

def generate_time_slots() -> list[str]:
    """Tutti gli orari di inizio validi: 12:00…23:45 e 00:00…01:45 (56 slot)."""
    slots = []
    current = datetime.combine(date.min, OPENING_TIME)
    end = datetime.combine(date.min + timedelta(days=1), CLOSING_TIME)
    while current < end:
        slots.append(current.strftime(TIME_FORMAT))
        current += timedelta(minutes=SLOT_MINUTES)
    return slots


def is_within_operating_window(value: time) -> bool:
    return value >= OPENING_TIME or value < CLOSING_TIME


def is_valid_slot(value: time) -> bool:
    """Orario allineato ai 15 minuti e dentro la finestra 12:00–02:00."""
    if value.second or value.microsecond:
        return False
    if value.minute % SLOT_MINUTES != 0:
        return False
    return is_within_operating_window(value)


# ─────────────────────────────────────────
# PARSING / FORMATTAZIONE
# ─────────────────────────────────────────

def parse_date(value) -> date:
    """Accetta date, datetime o stringa 'YYYY-MM-DD' (anche 'YYYY-MM-DDTHH:MM:SS')."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return datetime.strptime(value.strip().split("T")[0], DATE_FORMAT).date()
    raise ValueError(f"Data non valida: {value!r}")


def parse_time(value) -> time:
    """Accetta time o stringa 'HH:MM' / 'HH:MM:SS'."""
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        raw = value.strip()
        for fmt in (TIME_FORMAT, "%H:%M:%S"):
            try:
                return datetime.strptime(raw, fmt).time()
            except ValueError:
                continue
    raise ValueError(f"Orario non valido: {value!r}")


def format_date(value) -> str | None:
    if value is None:
        return None
    return parse_date(value).strftime(DATE_FORMAT)


def format_time(value) -> str | None:
    if value is None:
        return None
    return parse_time(value).strftime(TIME_FORMAT)


def round_hours(hours: float) -> float:
    """Arrotonda a un decimale, metà verso l'alto (2.25 -> 2.3)."""
    return float(Decimal(str(hours)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def is_indefinite(duration) -> bool:
    if duration is None:
        return False
    return Decimal(str(duration)) == INDEFINITE_DURATION


def parse_duration(value) -> float:
    """Converte l'input in ore (float) o nel sentinella -1; None -> durata di default."""
    if value is None or value == "":
        return DEFAULT_DURATION_HOURS
    if isinstance(value, bool):
        raise ValueError(f"Durata non valida: {value!r}")
    try:
        parsed = Decimal(str(value).strip())
    except ArithmeticError:
        raise ValueError(f"Durata non valida: {value!r}")
    if not parsed.is_finite():
        raise ValueError(f"Durata non valida: {value!r}")
    if parsed == INDEFINITE_DURATION:
        return INDEFINITE_DURATION
    return float(parsed)


def is_valid_duration(duration) -> bool:
    if is_indefinite(duration):
        return True
    return MIN_DURATION_HOURS <= float(duration) <= MAX_DURATION_HOURS


def normalize_duration(duration):
    """-1 resta il sentinella intero, il resto viene arrotondato a un decimale."""
    if duration is None:
        return None
    if is_indefinite(duration):
        return INDEFINITE_DURATION
    return round_hours(float(duration))


def format_duration_display(duration) -> str:
    if duration is None:
        return "sconosciuta"
    if is_indefinite(duration):
        return "indefinita"
    return f"{normalize_duration(duration):g}h"


# ─────────────────────────────────────────
# INTERVALLI
# ─────────────────────────────────────────

def start_of(reservation_date, reservation_time) -> datetime:
    return datetime.combine(parse_date(reservation_date), parse_time(reservation_time))


def indefinite_end(reservation_date) -> datetime:
    return datetime.combine(parse_date(reservation_date) + timedelta(days=1), INDEFINITE_CUTOFF)


def end_of(reservation_date, reservation_time, duration) -> datetime:
    if is_indefinite(duration):
        return indefinite_end(reservation_date)
    # Secondi interi, come ROUND(duration * 3600) nei trigger
    seconds = int((Decimal(str(duration)) * 3600).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return start_of(reservation_date, reservation_time) + timedelta(seconds=seconds)


def reservation_interval(reservation_date, reservation_time, duration) -> Interval:
    return Interval(
        start=start_of(reservation_date, reservation_time),
        end=end_of(reservation_date, reservation_time, duration),
    )


def interval_of(reservation) -> Interval:
    """Intervallo di un oggetto con reservation_date/reservation_time/duration_hours."""
    return reservation_interval(reservation.reservation_date, reservation.reservation_time, reservation.duration_hours)


def crosses_midnight(reservation_time, duration) -> bool:
    """True se la prenotazione finisce nel giorno successivo (le indefinite sempre)."""
    if is_indefinite(duration):
        return True
    t = parse_time(reservation_time)
    start_hours = t.hour + t.minute / 60
    return start_hours + float(duration) > 24


def day_start(value) -> datetime:
    return datetime.combine(parse_date(value), time.min)


def elapsed_hours(start: datetime, now: datetime) -> float:
    return (now - start).total_seconds() / 3600

"""
Fixture pytest condivise.

Il database è SQLite in memoria con StaticPool (una sola connessione condivisa):
DATABASE_URL va impostato prima di importare pubapp, perché l'engine nasce all'import.
Schema e trigger vengono creati e distrutti a ogni test.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_COMPLETE_INTERVAL_SECONDS"] = "0"

from datetime import time  # noqa: E402

import pytest  # noqa: E402

from pubapp import create_app  # noqa: E402
from pubapp.database import Base, SessionLocal, engine, import_models  # noqa: E402
from pubapp.models.reservation import Reservation  # noqa: E402
from pubapp.models.room import Room  # noqa: E402
from pubapp.models.table import Table  # noqa: E402
from pubapp.services import booking  # noqa: E402

import_models()


@pytest.fixture(scope="function")
def db():
    """Sessione su un database nuovo per ogni test (trigger compresi)."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Niente attese reali tra i tentativi; registra le pause richieste."""
    pauses = []
    monkeypatch.setattr(booking, "sleep", pauses.append)
    return pauses


@pytest.fixture
def room(db):
    room = Room(name="Sala grande", description="Sala principale")
    db.add(room)
    db.commit()
    return room


@pytest.fixture
def tables(db, room):
    """A1 (4 posti), A2 (2 posti) e B9 disattivato."""
    a1 = Table(room_id=room.id, table_number="A1", max_capacity=4)
    a2 = Table(room_id=room.id, table_number="A2", max_capacity=2)
    b9 = Table(room_id=room.id, table_number="B9", max_capacity=6, is_active=False)
    db.add_all([a1, a2, b9])
    db.commit()
    return {"A1": a1, "A2": a2, "B9": b9}


@pytest.fixture
def table(tables):
    return tables["A1"]


@pytest.fixture
def add_reservation(db):
    """
    Inserisce una prenotazione direttamente via ORM, senza validazione applicativa
    (il trigger anti-sovrapposizione resta attivo).
    """
    def _add(table, day, start, duration=2.0, status="active", **extra):
        reservation = Reservation(
            table_id=table.id,
            guest_name=extra.pop("guest_name", "Mario Rossi"),
            party_size=extra.pop("party_size", 2),
            reservation_date=day,
            reservation_time=start if isinstance(start, time) else time.fromisoformat(start),
            duration_hours=duration,
            status=status,
            **extra,
        )
        db.add(reservation)
        db.commit()
        return reservation
    return _add


@pytest.fixture
def app(db):
    app = create_app({
        "TESTING": True,
        "INIT_DB": False,
        "RATELIMIT_ENABLED": False,
        "AUTO_COMPLETE_INTERVAL_SECONDS": 0,
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()

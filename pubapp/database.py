from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv
import os

# Carica le variabili dal file .env
load_dotenv()

# Recupera i valori dal file .env
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST")
DB_NAME = os.getenv("DB_NAME")
DB_PORT = os.getenv("DB_PORT")
USE_SQLITE = os.getenv("USE_SQLITE", "false").lower() == "true"


def build_database_url() -> str:
    """
    Risolve l'URL del database.

    Ordine: DATABASE_URL esplicito, poi SQLite locale (USE_SQLITE=true),
    altrimenti MySQL con le credenziali DB_*.
    """
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit
    if USE_SQLITE:
        from pathlib import Path
        base_dir = Path(__file__).parent.parent
        db_path = base_dir / "pubapp.db"
        return f"sqlite:///{db_path}"
    return f"mysql+mysqlconnector://{DB_USER}:{DB_PASSWORD or ''}@{DB_HOST}:{DB_PORT or '3306'}/{DB_NAME}"


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        # Con REPEATABLE READ il trigger leggerebbe lo snapshot di inizio transazione
        # anche dopo aver atteso il lock sul tavolo
        return {"pool_pre_ping": True, "isolation_level": "READ COMMITTED"}
    # Database in memoria: una sola connessione condivisa, altrimenti ogni sessione vede un db vuoto
    if _is_memory_sqlite(url):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {"connect_args": {"check_same_thread": False, "timeout": 30}}


def serialize_sqlite_writes(target_engine):
    """
    SQLite ignora FOR UPDATE: ogni transazione parte con BEGIN IMMEDIATE, così
    una sola scrittura alla volta e il trigger legge sempre righe già committate.
    """
    @event.listens_for(target_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str):
    new_engine = create_engine(url, echo=False, **_engine_options(url))
    if url.startswith("sqlite") and not _is_memory_sqlite(url):
        serialize_sqlite_writes(new_engine)
    return new_engine


SQLALCHEMY_DATABASE_URL = build_database_url()

# Connessione
engine = make_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def import_models():
    """Registra tutti i modelli su Base.metadata (necessario prima di create_all)."""
    from pubapp.models import room, table, reservation, activity_log  # noqa: F401
    from pubapp.models import overlap_guard  # noqa: F401


def init_db():
    """Crea le tabelle mancanti e sincronizza i trigger anti-sovrapposizione."""
    import_models()
    from pubapp.models.overlap_guard import install_overlap_guard

    Base.metadata.create_all(bind=engine)
    with engine.begin() as conn:
        install_overlap_guard(conn)


@contextmanager
def get_db():
    """
    Context manager per sessioni database.

    Uso:
        with get_db() as db:
            result = db.query(Model).all()
            # La sessione viene chiusa automaticamente
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

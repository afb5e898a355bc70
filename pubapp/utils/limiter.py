"""
Rate limiter centralizzato per PubApp.

Il limiter viene associato all'app in pubapp/__init__.py e può essere usato
nei blueprint per limitare le singole route.
"""
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Creato senza app, associato dopo da init_limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200 per hour", "50 per minute"],
    storage_uri="memory://",  # Per produzione, considerare Redis
    strategy="fixed-window",
)

BOOKING_CREATE_LIMIT = "10 per minute"


def init_limiter(app):
    """Inizializza il limiter con l'app Flask (RATELIMIT_ENABLED=false lo disattiva)."""
    limiter.init_app(app)
    return limiter

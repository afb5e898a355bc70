import logging
import os
import time

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_limiter.errors import RateLimitExceeded
from werkzeug.exceptions import HTTPException

from pubapp.database import init_db
from pubapp.routes import all_blueprints  # ✅ import centralizzato
from pubapp.utils.exceptions import BookingError
from pubapp.utils.limiter import init_limiter


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def create_app(config: dict | None = None):
    load_dotenv()
    app = Flask(__name__)
    app.secret_key = os.getenv("SECRET_KEY")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO").upper()
    app.config["AUTO_COMPLETE_INTERVAL_SECONDS"] = int(os.getenv("AUTO_COMPLETE_INTERVAL_SECONDS", "60"))
    app.config["RATELIMIT_ENABLED"] = _env_flag("RATELIMIT_ENABLED", "true")
    app.config["INIT_DB"] = True
    if config:
        app.config.update(config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # ⚡ Configurazione Rate Limiting
    app.limiter = init_limiter(app)

    # Tabelle e trigger anti-sovrapposizione
    if app.config["INIT_DB"]:
        try:
            init_db()
        except Exception as exc:
            # Evita di bloccare l'avvio dell'app: logga l'errore e prosegui.
            app.logger.error("Impossibile inizializzare il database: %s", exc)

    # Error handlers
    @app.errorhandler(BookingError)
    def handle_booking_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(e):
        return jsonify({
            "error": "Troppe richieste. Attendi qualche istante prima di riprovare.",
            "code": "RATE_LIMITED",
        }), 429

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description, "code": e.name.upper().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        app.logger.exception("Errore non gestito: %s", e)
        return jsonify({"error": "Errore interno del server", "code": "INTERNAL_ERROR"}), 500

    # Registra automaticamente tutti i blueprint
    for bp in all_blueprints:
        app.register_blueprint(bp)

    # ⚡ Completamento automatico prenotazioni scadute
    # Al massimo una volta ogni AUTO_COMPLETE_INTERVAL_SECONDS (0 = disattivato)
    last_sweep = {"at": None}

    @app.before_request
    def check_auto_complete():
        interval = app.config["AUTO_COMPLETE_INTERVAL_SECONDS"]
        if interval <= 0:
            return
        if last_sweep["at"] is not None and time.monotonic() - last_sweep["at"] < interval:
            return
        last_sweep["at"] = time.monotonic()
        from pubapp.services.auto_complete import auto_complete_expired_reservations
        try:
            auto_complete_expired_reservations()
        except Exception:
            # Non bloccare le richieste se il controllo fallisce
            app.logger.exception("Auto-completamento prima della richiesta fallito")

    @app.cli.command("auto-complete")
    def auto_complete_command():
        """Completa le prenotazioni scadute."""
        from pubapp.services.auto_complete import auto_complete_expired_reservations
        completed = auto_complete_expired_reservations()
        click.echo(f"Prenotazioni completate: {completed}")

    @app.cli.command("init-db")
    def init_db_command():
        """Crea le tabelle e reinstalla i trigger anti-sovrapposizione."""
        init_db()
        click.echo("Database inizializzato")

    return app

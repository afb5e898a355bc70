"""Utility condivise dai blueprint API."""
from flask import request

from pubapp.utils.exceptions import ValidationError


def json_body() -> dict:
    """Corpo JSON della richiesta (dizionario vuoto se assente)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Il corpo della richiesta deve essere un oggetto JSON")
    return data


def client_info() -> dict:
    """IP e user agent da allegare alle voci del registro attività."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip_address = forwarded.split(",")[0].strip() or request.remote_addr
    return {"ip_address": ip_address, "user_agent": request.headers.get("User-Agent")}


def arg(*names, type=None):
    """Primo parametro di query valorizzato tra i nomi alternativi (es. table_id / tableId)."""
    for name in names:
        raw = request.args.get(name)
        if raw in (None, ""):
            continue
        if type is None:
            return raw
        try:
            return type(raw)
        except (TypeError, ValueError):
            raise ValidationError({name: f"Valore non valido: {raw}"})
    return None

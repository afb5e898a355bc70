"""Conversioni dell'input JSON condivise dai servizi."""


def parse_int(value) -> int:
    """Intero da JSON o stringa; rifiuta booleani e decimali (2.7 non diventa 2)."""
    if isinstance(value, bool):
        raise TypeError("booleano non ammesso")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value} non è un intero")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    if isinstance(value, int):
        return value
    raise TypeError(f"tipo non ammesso: {type(value).__name__}")

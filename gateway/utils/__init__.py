import time


def format_authority(host: str, port: int) -> str:
    return f"{host}:{port}"


def elapsed_ms(started: float) -> float:
    """Milliseconds since ``started`` (a ``time.perf_counter()`` reading)."""
    return round((time.perf_counter() - started) * 1000, 2)

import os

# Basic settings helper to read environment configuration.


def _as_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def _as_float(val: str | None, default: float) -> float:
    if val is None or not val.strip():
        return default
    return float(val)


class Settings:
    def __init__(self) -> None:
        self.LIBRARY_QUERY: str = os.getenv("LIBRARY_QUERY", "Public Library")
        self.SEARCH_RADIUS_M: float = _as_float(os.getenv("SEARCH_RADIUS_M"), 5000.0)
        self.PLACES_MAX_RESULTS: int = int(os.getenv("PLACES_MAX_RESULTS", "40"))
        self.PLACES_CACHE_ENABLED: bool = _as_bool(os.getenv("PLACES_CACHE_ENABLED"), True)
        # Default camera: San Francisco
        self.DEFAULT_CENTER_LAT: float = _as_float(os.getenv("DEFAULT_CENTER_LAT"), 37.7749)
        self.DEFAULT_CENTER_LON: float = _as_float(os.getenv("DEFAULT_CENTER_LON"), -122.4194)
        self.DEFAULT_SPAN_DELTA: float = _as_float(os.getenv("DEFAULT_SPAN_DELTA"), 0.05)
        self.MIN_VIEWPORT_SPAN: float = _as_float(os.getenv("MIN_VIEWPORT_SPAN"), 0.01)
        self.VISITED_DB_PATH: str | None = os.getenv("VISITED_DB_PATH")


settings = Settings()

import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "sourcing_engine.db")

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-sourcing-engine")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")
    TX_MAX_ATTEMPTS = _int_env("TX_MAX_ATTEMPTS", 5)
    DELIVERY_BUFFER_WORKING_DAYS = _int_env("DELIVERY_BUFFER_WORKING_DAYS", 7)
    DEFAULT_THREE_QUOTE_THRESHOLD = _float_env("DEFAULT_THREE_QUOTE_THRESHOLD", 0.0)
    DEFAULT_TENDER_THRESHOLD = _float_env("DEFAULT_TENDER_THRESHOLD", 0.0)
    # Callable returning the business date; tests pin it, None means date.today.
    BUSINESS_DATE_CLOCK = None

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-sourcing-engine":
            raise RuntimeError("SECRET_KEY must be overridden in production.")
        if self.TX_MAX_ATTEMPTS < 1:
            raise RuntimeError("TX_MAX_ATTEMPTS must be at least 1.")

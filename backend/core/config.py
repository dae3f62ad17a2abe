import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None or not value.strip():
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medicare.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), [os.getenv("CLIENT_URL", "http://localhost:5173")])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = _get_int(os.getenv("JWT_EXPIRES_MINUTES"), 60 * 24)

# Empty CACHE_URL keeps the cache in-process.
CACHE_URL = os.getenv("CACHE_URL", "")
CACHE_SOCKET_TIMEOUT_SECONDS = _get_int(os.getenv("CACHE_SOCKET_TIMEOUT_SECONDS"), 2)
SPECIALIZATIONS_CACHE_TTL_SECONDS = _get_int(os.getenv("SPECIALIZATIONS_CACHE_TTL_SECONDS"), 86400)
REPORTS_CACHE_TTL_SECONDS = _get_int(os.getenv("REPORTS_CACHE_TTL_SECONDS"), 3600)
DOCTOR_CACHE_TTL_SECONDS = _get_int(os.getenv("DOCTOR_CACHE_TTL_SECONDS"), 3600)

SLOT_CAPACITY = _get_int(os.getenv("SLOT_CAPACITY"), 6)
DEFAULT_APPOINTMENT_FEE = _get_int(os.getenv("DEFAULT_APPOINTMENT_FEE"), 500)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_FALLBACK_MODEL = os.getenv("GEMINI_FALLBACK_MODEL", "gemini-1.5-flash")


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if SLOT_CAPACITY < 1:
        raise RuntimeError("SLOT_CAPACITY must be at least 1.")

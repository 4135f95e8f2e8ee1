import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    data_file: str = os.getenv("LIBRARY_DB_FILE", "booksmart.db")
    sqlite_timeout_seconds: float = float(os.getenv("SQLITE_TIMEOUT_SECONDS", "5"))

    # Lending policy
    reservation_limit: int = int(os.getenv("RESERVATION_LIMIT", "5"))
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "14"))
    lib_card_validity_days: int = int(os.getenv("LIB_CARD_VALIDITY_DAYS", "365"))
    max_extension_days: int = int(os.getenv("MAX_EXTENSION_DAYS", "30"))

    # Concurrency
    conflict_retry_attempts: int = int(os.getenv("CONFLICT_RETRY_ATTEMPTS", "3"))
    lock_timeout_seconds: float = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "BookSmart Lending Service")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_bool("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()

import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        admin_email: str,
        admin_name: str,
        audit_enabled: bool,
        audit_hour: int,
        reconcile_attempts: int,
        strict_categories: bool,
        top_n: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.admin_email = admin_email
        self.admin_name = admin_name
        self.audit_enabled = audit_enabled
        self.audit_hour = audit_hour
        self.reconcile_attempts = reconcile_attempts
        self.strict_categories = strict_categories
        self.top_n = top_n


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINTRACK_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'fintrack.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("FINTRACK_TIMEZONE", "UTC"),
        log_level=os.getenv("FINTRACK_LOG_LEVEL", "INFO").upper(),
        admin_email=os.getenv("FINTRACK_ADMIN_EMAIL", "admin@financetracker.com"),
        admin_name=os.getenv("FINTRACK_ADMIN_NAME", "System Admin"),
        audit_enabled=_env_flag("FINTRACK_AUDIT_ENABLED", "true"),
        audit_hour=int(os.getenv("FINTRACK_AUDIT_HOUR", "3")),
        # At least one attempt is always made.
        reconcile_attempts=max(1, int(os.getenv("FINTRACK_RECONCILE_ATTEMPTS", "2"))),
        strict_categories=_env_flag("FINTRACK_STRICT_CATEGORIES", "false"),
        top_n=int(os.getenv("FINTRACK_TOP_N", "10")),
    )

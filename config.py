import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        session_max_age_hours: int,
        admin_email: Optional[str],
        admin_password: Optional[str],
        backup_kdf_iterations: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.session_max_age_hours = session_max_age_hours
        self.admin_email = admin_email
        self.admin_password = admin_password
        self.backup_kdf_iterations = backup_kdf_iterations


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "America/Sao_Paulo")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "5d0c1f7e9a2b4c86b1e3f0a7d4c2e9b8a6f1d3c5e7b9a0c2e4f6a8b0c1d3e5f7",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "24"))
    admin_email = os.getenv("FINANCE_ADMIN_EMAIL") or None
    admin_password = os.getenv("FINANCE_ADMIN_PASSWORD") or None
    backup_kdf_iterations = int(os.getenv("FINANCE_BACKUP_KDF_ITERATIONS", "390000"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        session_max_age_hours=session_max_age_hours,
        admin_email=admin_email,
        admin_password=admin_password,
        backup_kdf_iterations=backup_kdf_iterations,
    )

import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/kasir')
        self.db_pool_min_size = _env_int("DB_POOL_MIN_SIZE", 1)
        self.db_pool_max_size = _env_int("DB_POOL_MAX_SIZE", 5)
        # Device-local SQLite file holding carts, the session marker and the profile image path.
        self.local_store_path = os.getenv("LOCAL_STORE_PATH", "").strip() or os.path.join(
            os.path.expanduser("~"), ".kasir", "local.sqlite"
        )
        self.report_page_size = max(1, _env_int("REPORT_PAGE_SIZE", 10))
        # Comma-separated list of allowed CORS origins for the mobile/web front end.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:8081", "http://127.0.0.1:8081"],
        )
        self.store_name = os.getenv("STORE_NAME", "TOKO KASIR SAYA").strip() or "TOKO KASIR SAYA"
        self.store_address = os.getenv("STORE_ADDRESS", "Jl. Raya No.123").strip()
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"


settings = Settings()

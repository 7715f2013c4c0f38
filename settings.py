import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

DEFAULT_DB_URL = "sqlite:///seo_audit.db"
DEFAULT_DATAFORSEO_URL = "https://api.dataforseo.com/v3"


def _env_float(name, default):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name, default):
    return int(_env_float(name, default))


@dataclass(frozen=True)
class Settings:
    db_url: str = DEFAULT_DB_URL
    dataforseo_login: str = ""
    dataforseo_password: str = ""
    dataforseo_base_url: str = DEFAULT_DATAFORSEO_URL
    requests_per_second: float = 2.0
    max_workers: int = 8
    max_pages: int = 100
    crawl_timeout: float = 300.0
    write_timeout: float = 30.0

    @property
    def crawl_provider_configured(self):
        return bool(self.dataforseo_login and self.dataforseo_password)

    @classmethod
    def from_env(cls):
        """Build settings from the process environment (and .env, if present)."""
        return cls(
            db_url=os.getenv("AUDIT_DB_URL", DEFAULT_DB_URL),
            dataforseo_login=os.getenv("DATAFORSEO_LOGIN", "").strip(),
            dataforseo_password=os.getenv("DATAFORSEO_PASSWORD", "").strip(),
            dataforseo_base_url=os.getenv("DATAFORSEO_BASE_URL", DEFAULT_DATAFORSEO_URL).rstrip("/"),
            requests_per_second=_env_float("DATAFORSEO_REQUESTS_PER_SECOND", 2.0),
            max_workers=max(1, _env_int("AUDIT_MAX_WORKERS", 8)),
            max_pages=max(1, _env_int("AUDIT_MAX_PAGES", 100)),
            crawl_timeout=_env_float("AUDIT_CRAWL_TIMEOUT", 300.0),
            write_timeout=_env_float("AUDIT_WRITE_TIMEOUT", 30.0),
        )

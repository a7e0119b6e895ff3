import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load env from backend/.env.local if exists, then a plain .env
_env_path = Path(__file__).resolve().parent.parent / ".env.local"
if _env_path.exists():
    load_dotenv(_env_path)
load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    mongodb_uri: str = "mongodb://localhost:27017"
    server_selection_timeout_ms: int = 5000
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    trusted_proxies: List[str] = field(default_factory=list)
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max: int = 100
    rate_limit_message: str = "Too many requests, please try again later."
    max_body_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"
    log_dir: str = "logs"
    host: str = "0.0.0.0"
    port: int = 3000

    @property
    def auth_enabled(self) -> bool:
        return bool(self.api_key or self.api_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("ALLOWED_ORIGINS")
        proxies = os.getenv("TRUSTED_PROXIES", "")
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI", cls.mongodb_uri),
            server_selection_timeout_ms=_int_env(
                "MONGO_SERVER_SELECTION_TIMEOUT_MS", cls.server_selection_timeout_ms
            ),
            api_key=os.getenv("API_KEY") or None,
            api_secret=os.getenv("API_SECRET") or None,
            allowed_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else ["*"],
            trusted_proxies=[p.strip() for p in proxies.split(",") if p.strip()],
            rate_limit_window_ms=_int_env("RATE_LIMIT_WINDOW_MS", cls.rate_limit_window_ms),
            rate_limit_max=_int_env("RATE_LIMIT_MAX", cls.rate_limit_max),
            rate_limit_message=os.getenv("RATE_LIMIT_MESSAGE") or cls.rate_limit_message,
            max_body_bytes=_int_env("MAX_BODY_BYTES", cls.max_body_bytes),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            log_dir=os.getenv("LOG_DIR", cls.log_dir),
            host=os.getenv("HOST", cls.host),
            port=_int_env("PORT", cls.port),
        )

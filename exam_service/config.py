import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None or val.strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val.strip()


def _parse_origins(raw: str) -> list[str]:
    raw = (raw or "").strip()
    if not raw:
        return ["*"]
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


DATABASE_URL = _get_env("DATABASE_URL", "sqlite:///./exam_service.db")
AUTH_SERVICE_URL = _get_env("AUTH_SERVICE_URL", "http://auth-service:8001").rstrip("/")
AUTH_TIMEOUT_SECONDS = float(_get_env("AUTH_TIMEOUT_SECONDS", "5.0"))
CORS_ORIGINS = _parse_origins(os.getenv("CORS_ORIGINS", "*"))
LOG_LEVEL = _get_env("LOG_LEVEL", "INFO").upper()
PORT = int(_get_env("PORT", "8008"))

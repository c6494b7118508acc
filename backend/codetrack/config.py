# backend/codetrack/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/codetrack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///codetrack.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Comma-separated browser origins allowed to call the API (scanner web apps)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",") if o.strip()
    )

    # Code generation defaults (used when the order does not carry its own)
    DEFAULT_BUFFER_PERCENT = _int_env("DEFAULT_BUFFER_PERCENT", 10)
    DEFAULT_UNITS_PER_CASE = _int_env("DEFAULT_UNITS_PER_CASE", 100)

    # Units a case may be short of expected and still be sealed explicitly
    SEAL_TOLERANCE_UNITS = _int_env("SEAL_TOLERANCE_UNITS", 0)

    # 0 disables expiry
    SHIPMENT_SESSION_TTL_MINUTES = _int_env("SHIPMENT_SESSION_TTL_MINUTES", 240)

    # Batch workbook output
    ARTIFACT_DIR = os.environ.get("ARTIFACT_DIR", os.path.join(os.getcwd(), "artifacts"))
    TRACKING_BASE_URL = os.environ.get("TRACKING_BASE_URL", "https://track.example.com")

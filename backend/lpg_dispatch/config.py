# backend/lpg_dispatch/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lpg_dispatch.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location (e.g. hosted Postgres)
        "sqlite:///lpg_dispatch.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Delivery proof uploads ("receipts" bucket)
    PROOF_UPLOAD_DIR = os.environ.get("PROOF_UPLOAD_DIR", os.path.join(os.getcwd(), "uploads", "receipts"))
    PROOF_PUBLIC_BASE_URL = os.environ.get("PROOF_PUBLIC_BASE_URL", "/uploads/receipts")
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_UPLOAD_BYTES", str(8 * 1024 * 1024)))

    # Session lifetimes (hours)
    SESSION_ABSOLUTE_HOURS = int(os.environ.get("SESSION_ABSOLUTE_HOURS", "24"))
    SESSION_IDLE_HOURS = int(os.environ.get("SESSION_IDLE_HOURS", "8"))

    # bcrypt cost factor for passwords set through the API
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if origin.strip()
    )

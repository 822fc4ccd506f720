# backend/steeltrack/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/steeltrack.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///steeltrack.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Session tokens (HS256 signed JWTs)
    JWT_SECRET = os.environ.get("JWT_SECRET", "steel-project-dev-secret-change-me")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_EXPIRES_DAYS = int(os.environ.get("JWT_EXPIRES_DAYS", "7"))

    # bcrypt cost for stored OTP codes (4 is the bcrypt minimum)
    OTP_HASH_ROUNDS = int(os.environ.get("OTP_HASH_ROUNDS", "10"))

    # SMS gateway. Without an API key the console sender is used (test mode).
    FAST2SMS_API_KEY = os.environ.get("FAST2SMS_API_KEY", "")
    FAST2SMS_URL = os.environ.get("FAST2SMS_URL", "https://www.fast2sms.com/dev/bulkV2")
    SMS_SENDER_ID = os.environ.get("SMS_SENDER_ID", "STEEL")
    SMS_TEMPLATE_ID = os.environ.get("SMS_TEMPLATE_ID", "208865")
    SMS_TIMEOUT_SECONDS = float(os.environ.get("SMS_TIMEOUT_SECONDS", "10"))

    # Day 1 of the sequential day counter shown on dispatches and daily stock
    STOCK_EPOCH = os.environ.get("STOCK_EPOCH", "2025-01-01")

    # Every REWARD_THRESHOLD_KG transacted earns REWARD_RATE of it back
    REWARD_THRESHOLD_KG = os.environ.get("REWARD_THRESHOLD_KG", "100")
    REWARD_RATE = os.environ.get("REWARD_RATE", "0.05")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]

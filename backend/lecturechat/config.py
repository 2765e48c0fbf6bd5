"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    LOG_LEVEL: str
    DATABASE_URL: str
    GOOGLE_CLIENT_ID: str
    GOOGLE_JWKS_URL: str
    ID_TOKEN_COOKIE: str
    MESSAGE_LIMIT: int
    MESSAGE_RATE_LIMIT_PER_MIN: int
    ALLOW_DEV_CORS: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'lecturechat.db'}")
        self.GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
        self.GOOGLE_JWKS_URL = os.getenv("GOOGLE_JWKS_URL", "https://www.googleapis.com/oauth2/v3/certs")
        self.ID_TOKEN_COOKIE = os.getenv("ID_TOKEN_COOKIE", "id_token")
        self.MESSAGE_LIMIT = int(os.getenv("MESSAGE_LIMIT", "20"))
        self.MESSAGE_RATE_LIMIT_PER_MIN = int(os.getenv("MESSAGE_RATE_LIMIT_PER_MIN", "30"))
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.GOOGLE_CLIENT_ID:
            raise RuntimeError("GOOGLE_CLIENT_ID must be set in non-dev environments")
        if self.MESSAGE_LIMIT <= 0:
            raise RuntimeError("MESSAGE_LIMIT must be positive")


settings = Settings()

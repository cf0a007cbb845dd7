"""Configuration settings for the application.

A single mutable Settings container shared by the other components. Tests
override individual fields with `monkeypatch.setattr(settings, ...)`.
"""
from dataclasses import dataclass


@dataclass
class Settings:
    DB_PATH: str = "data/vaxtrack.db"
    STORAGE_PATH: str = "storage"
    # per-call bound for inventory store I/O, in seconds
    STORE_TIMEOUT_SECONDS: float = 30.0
    # total attempts for a store call failing with a transient error
    STORE_RETRY_ATTEMPTS: int = 2
    COMMIT_WORKERS: int = 4
    EXPIRING_DAYS_DEFAULT: int = 30


settings = Settings()

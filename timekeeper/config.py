from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_TITLE: str = "Timekeeper"
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "timekeeper"
    PRODUCTION_MODE: bool = False
    PORT: int = 11000
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:5173"]

    # timer defaults
    DEFAULT_TIMEZONE: str = "UTC"
    DEFAULT_CATEGORY: str = "work"
    DEFAULT_DESCRIPTION: str = "Working on task"
    DESCRIPTION_MAX_LENGTH: int = 500

    # reporting
    RECENT_ENTRIES_LIMIT: int = 10
    MAX_PAGE_SIZE: int = 100
    TEAM_RECENT_ENTRIES_LIMIT: int = 50

    START_RETRY_ATTEMPTS: int = 3
    INVARIANT_SWEEP_MINUTES: int = 15

    class Config:
        env_file = ".env"

settings = Settings()

# grid_server/config.py - Application configuration

import os
from typing import List

class Settings:
    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./tablehub.db"
    )

    # CORS
    CORS_ORIGINS: List[str] = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:8080"
    ).split(",")

    # Debug mode
    DEBUG: bool = os.getenv("DEBUG", "true").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Window settings
    DEFAULT_WINDOW_SIZE: int = int(os.getenv("DEFAULT_WINDOW_SIZE", "300"))
    MAX_WINDOW_SIZE: int = int(os.getenv("MAX_WINDOW_SIZE", "1000"))
    EXPORT_PAGE_SIZE: int = int(os.getenv("EXPORT_PAGE_SIZE", "1000"))

    # Indexing (pg_trgm needs CREATE privilege on the database)
    ENABLE_TRIGRAM_INDEXES: bool = os.getenv("ENABLE_TRIGRAM_INDEXES", "true").lower() == "true"

settings = Settings()

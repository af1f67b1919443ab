# grid_client/config.py - Client configuration

import os

class Settings:
    # Backend
    API_URL: str = os.getenv("GRID_API_URL", "http://localhost:8000")
    API_TIMEOUT: float = float(os.getenv("GRID_API_TIMEOUT", "30"))

    # Edit pipeline
    COMMIT_DEBOUNCE_MS: int = int(os.getenv("COMMIT_DEBOUNCE_MS", "500"))

    # Windowing
    WINDOW_SIZE: int = int(os.getenv("GRID_WINDOW_SIZE", "300"))
    ROW_HEIGHT: int = int(os.getenv("GRID_ROW_HEIGHT", "32"))

settings = Settings()

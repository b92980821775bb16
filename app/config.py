"""
Application configuration
"""
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Settings from environment variables"""

    # Storage
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "scorebook.db")

    # Match defaults (matches table allows 1-999 overs)
    DEFAULT_TOTAL_OVERS: int = int(os.getenv("DEFAULT_TOTAL_OVERS", "20"))
    MAX_TOTAL_OVERS: int = int(os.getenv("MAX_TOTAL_OVERS", "999"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Comma-separated extra CORS origins
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "")


settings = Settings()

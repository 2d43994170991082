import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "5000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Database settings
    data_file: str = os.getenv("BOOKRENTAL_DB_FILE", "bookrental.db")

    # Google Books API settings
    google_books_api_key: Optional[str] = os.getenv("GOOGLE_BOOKS_API_KEY")
    google_books_timeout: float = float(os.getenv("GOOGLE_BOOKS_TIMEOUT", "10"))
    google_books_max_results: int = int(os.getenv("GOOGLE_BOOKS_MAX_RESULTS", "10"))
    enable_google_books: bool = _env_flag("ENABLE_GOOGLE_BOOKS", "True")
    # Return local matches only when the provider fails, instead of failing the request
    search_degrade_on_provider_error: bool = _env_flag("SEARCH_DEGRADE_ON_PROVIDER_ERROR", "False")

    # Marketplace settings
    recommendation_limit: int = int(os.getenv("RECOMMENDATION_LIMIT", "5"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Book Rental Marketplace")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()

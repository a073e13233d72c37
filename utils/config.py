"""
Configuration management for the Kokbok recipe pipeline.

Handles environment variables, database settings, and pipeline thresholds.
A Config is built once at process start and handed to each service.
"""

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; RecipeImporter/1.0; recipe parser)"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """Pipeline configuration settings"""

    # Database settings
    database_path: str = "kokbok.db"

    # Source extraction settings
    scraping_timeout_seconds: int = 30
    user_agent: str = DEFAULT_USER_AGENT
    accept_language: str = "sv-SE,sv;q=0.9,en;q=0.8"
    render_enabled: bool = True
    render_timeout_seconds: int = 30
    render_locale: str = "sv-SE"

    # Entity resolution settings
    resolver_max_workers: int = 8
    food_acceptance_threshold: float = 0.5
    unit_acceptance_threshold: float = 0.5
    duplicate_similarity_threshold: float = 0.7
    create_pending_foods: bool = True

    # AI integration settings
    ai_enabled: bool = True
    lm_studio_url: str = "http://localhost:1234/v1"
    ai_model: str = "local-model"
    ai_timeout_seconds: int = 120
    ai_temperature: float = 0.3

    # Image storage
    upload_directory: str = "uploads"
    max_image_size_mb: int = 5

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/kokbok.log"

    @classmethod
    def from_environment(cls) -> 'Config':
        """Create configuration from environment variables"""
        return cls(
            # Database
            database_path=os.getenv("KOKBOK_DB_PATH", "kokbok.db"),

            # Extraction
            scraping_timeout_seconds=int(os.getenv("KOKBOK_SCRAPING_TIMEOUT", "30")),
            user_agent=os.getenv("KOKBOK_USER_AGENT", DEFAULT_USER_AGENT),
            accept_language=os.getenv("KOKBOK_ACCEPT_LANGUAGE", "sv-SE,sv;q=0.9,en;q=0.8"),
            render_enabled=_env_bool("KOKBOK_RENDER_ENABLED", "true"),
            render_timeout_seconds=int(os.getenv("KOKBOK_RENDER_TIMEOUT", "30")),
            render_locale=os.getenv("KOKBOK_RENDER_LOCALE", "sv-SE"),

            # Resolution
            resolver_max_workers=int(os.getenv("KOKBOK_RESOLVER_WORKERS", "8")),
            food_acceptance_threshold=float(os.getenv("KOKBOK_FOOD_THRESHOLD", "0.5")),
            unit_acceptance_threshold=float(os.getenv("KOKBOK_UNIT_THRESHOLD", "0.5")),
            duplicate_similarity_threshold=float(os.getenv("KOKBOK_DUPLICATE_THRESHOLD", "0.7")),
            create_pending_foods=_env_bool("KOKBOK_CREATE_PENDING_FOODS", "true"),

            # AI
            ai_enabled=_env_bool("KOKBOK_AI_ENABLED", "true"),
            lm_studio_url=os.getenv("KOKBOK_LM_STUDIO_URL", "http://localhost:1234/v1"),
            ai_model=os.getenv("KOKBOK_AI_MODEL", "local-model"),
            ai_timeout_seconds=int(os.getenv("KOKBOK_AI_TIMEOUT", "120")),
            ai_temperature=float(os.getenv("KOKBOK_AI_TEMPERATURE", "0.3")),

            # Images
            upload_directory=os.getenv("KOKBOK_UPLOAD_DIR", "uploads"),
            max_image_size_mb=int(os.getenv("KOKBOK_MAX_IMAGE_MB", "5")),

            # Logging
            log_level=os.getenv("KOKBOK_LOG_LEVEL", "INFO"),
            log_file=os.getenv("KOKBOK_LOG_FILE", "logs/kokbok.log")
        )

    def ensure_directories(self):
        """Create necessary directories"""
        directories = [
            Path(self.upload_directory),
            Path(self.log_file).parent,
            Path(self.database_path).parent
        ]

        for directory in directories:
            if str(directory) not in ("", ".", ":memory:"):
                directory.mkdir(parents=True, exist_ok=True)

    @property
    def max_image_size_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

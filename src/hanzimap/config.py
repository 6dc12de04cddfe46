"""Configuration settings for the client core."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
CATALOG_FILE = Path(os.getenv("CATALOG_FILE", str(DATA_DIR / "characters.json")))

# Review settings
MAX_SYNC_ATTEMPTS = 5
LEARNING_FIRST_STEP = 5  # cards before a failed item comes back


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    catalog_file: Path = CATALOG_FILE


@dataclass
class DatabaseSettings:
    """Local store configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///hanzimap.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class ApiSettings:
    """Remote store settings."""
    base_url: str = os.getenv("API_BASE_URL", "https://chinese-app.synology.me")
    timeout: float = float(os.getenv("API_TIMEOUT", "10"))
    health_timeout: float = float(os.getenv("API_HEALTH_TIMEOUT", "3"))


@dataclass
class SyncSettings:
    """Sync queue settings."""
    interval: float = float(os.getenv("SYNC_INTERVAL", "10"))
    max_attempts: int = int(os.getenv("SYNC_MAX_ATTEMPTS", str(MAX_SYNC_ATTEMPTS)))
    probe_interval: float = float(os.getenv("NETWORK_PROBE_INTERVAL", "30"))


@dataclass
class QuizSettings:
    """Quiz session settings."""
    batch_size: int = int(os.getenv("QUIZ_BATCH_SIZE", "10"))
    learning_first_step: int = int(os.getenv("LEARNING_FIRST_STEP", str(LEARNING_FIRST_STEP)))
    auto_advance_delay: Optional[float] = (
        float(os.getenv("AUTO_ADVANCE_DELAY")) if os.getenv("AUTO_ADVANCE_DELAY") else None
    )
    timezone: str = os.getenv("DAY_TIMEZONE", "UTC")
    speech_locale: str = os.getenv("SPEECH_LOCALE", "zh-CN")


@dataclass
class MonitoringSettings:
    """Metrics exporter settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_api_settings() -> ApiSettings:
    """Get remote API settings."""
    return ApiSettings()


def get_sync_settings() -> SyncSettings:
    """Get sync settings."""
    return SyncSettings()


def get_quiz_settings() -> QuizSettings:
    """Get quiz settings."""
    return QuizSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    api: ApiSettings = field(default_factory=get_api_settings)
    sync: SyncSettings = field(default_factory=get_sync_settings)
    quiz: QuizSettings = field(default_factory=get_quiz_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not self.api.base_url:
            raise ValueError("API_BASE_URL is required")

        if self.api.timeout <= 0:
            raise ValueError("API_TIMEOUT must be positive")

        if self.sync.interval <= 0:
            raise ValueError("SYNC_INTERVAL must be positive")

        if self.sync.max_attempts < 1:
            raise ValueError("SYNC_MAX_ATTEMPTS must be positive")

        if self.quiz.batch_size < 1:
            raise ValueError("QUIZ_BATCH_SIZE must be positive")

        if self.quiz.learning_first_step < 1:
            raise ValueError("LEARNING_FIRST_STEP must be positive")

        if self.quiz.auto_advance_delay is not None and self.quiz.auto_advance_delay < 0:
            raise ValueError("AUTO_ADVANCE_DELAY cannot be negative")


# Create global settings instance
settings = Settings()
settings.validate()

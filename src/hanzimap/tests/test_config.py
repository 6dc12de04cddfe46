"""Tests for configuration settings."""
import importlib
import os

import pytest

from hanzimap import config
from hanzimap.config import QuizSettings, Settings, SyncSettings, settings


def test_data_directory_exists():
    """Test that the data directory is created."""
    from hanzimap.config import DATA_DIR

    assert DATA_DIR.exists()


def test_settings_defaults():
    """Test default settings values."""
    assert settings.sync.max_attempts == 5
    assert settings.quiz.batch_size == 10
    assert settings.quiz.learning_first_step == 5
    assert settings.quiz.speech_locale == "zh-CN"
    assert settings.api.timeout == 10
    assert settings.logging.format == "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def test_test_environment_loaded():
    """Test that .env.test is in effect."""
    assert settings.database.url == "sqlite://"
    assert settings.quiz.timezone == "UTC"


def test_settings_from_env():
    """Test that settings groups read environment variables when built."""
    os.environ["AUTO_ADVANCE_DELAY"] = "1.5"
    try:
        reloaded = importlib.reload(config)
        assert reloaded.settings.quiz.auto_advance_delay == 1.5
    finally:
        del os.environ["AUTO_ADVANCE_DELAY"]
        importlib.reload(config)


def test_validate_rejects_bad_values():
    """Test that invalid values are rejected."""
    with pytest.raises(ValueError):
        Settings(sync=SyncSettings(max_attempts=0)).validate()
    with pytest.raises(ValueError):
        Settings(quiz=QuizSettings(batch_size=0)).validate()
    with pytest.raises(ValueError):
        Settings(quiz=QuizSettings(auto_advance_delay=-1)).validate()

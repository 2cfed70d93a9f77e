"""Tests for settings and logging configuration."""

import logging

import pytest
from pydantic import ValidationError

from codepilot.config import FILESYSTEM_SERVER_COMMAND, Settings
from codepilot.utils.logging import LogConfig, get_logger, setup_logging


@pytest.fixture
def clean_env(monkeypatch):
    for key in ("ANTHROPIC_API_KEY", "TAVILY_API_KEY", "GITHUB_TOKEN"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir("/")
    return monkeypatch


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)

        assert settings.history_limit == 10
        assert settings.max_tool_rounds == 10
        assert settings.provider_disconnect_timeout == 1.0
        assert settings.filesystem_server == FILESYSTEM_SERVER_COMMAND
        assert settings.resolved_database_path() is None

    def test_reads_environment(self, clean_env):
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        clean_env.setenv("CODEPILOT_MAX_TOOL_ROUNDS", "3")
        clean_env.setenv("CODEPILOT_DATABASE_PATH", "~/codepilot/conversations.db")

        settings = Settings(_env_file=None)

        assert settings.anthropic_api_key == "sk-ant-test"
        assert settings.max_tool_rounds == 3
        assert settings.resolved_database_path().name == "conversations.db"
        assert "~" not in str(settings.resolved_database_path())

    def test_invalid_round_limit(self, clean_env):
        clean_env.setenv("CODEPILOT_MAX_TOOL_ROUNDS", "0")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_debug_forces_debug_logging(self, clean_env):
        settings = Settings(_env_file=None, debug=True, log_level="WARNING")
        assert settings.log_config().level == "DEBUG"


class TestLogging:
    """Tests for logging setup."""

    def test_setup_logging_writes_to_file(self, tmp_path):
        log_file = tmp_path / "logs" / "codepilot.log"
        setup_logging(LogConfig(level="INFO", file=str(log_file)))

        get_logger("codepilot.test").info("hello from the test")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "hello from the test" in log_file.read_text()
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_get_logger_explicit_level(self):
        logger = get_logger("codepilot.test.level", level="debug")
        assert logger.level == logging.DEBUG

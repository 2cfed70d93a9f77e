"""Configuration management for codepilot."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from codepilot.utils.logging import LogConfig

FILESYSTEM_SERVER_COMMAND = ["npx", "-y", "@modelcontextprotocol/server-filesystem"]
GITHUB_SERVER_COMMAND = ["npx", "-y", "@missionsquad/mcp-github"]


class Settings(BaseSettings):
    """Runtime settings, read from the environment and an optional .env file."""

    # Credentials keep their conventional variable names
    anthropic_api_key: str = Field(default="", validation_alias="ANTHROPIC_API_KEY")
    tavily_api_key: str = Field(default="", validation_alias="TAVILY_API_KEY")
    github_token: str = Field(default="", validation_alias="GITHUB_TOKEN")

    # Model
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = Field(default=4096, gt=0)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)

    # Turn engine
    history_limit: int = Field(default=10, ge=0)
    max_tool_rounds: int = Field(default=10, ge=1)
    owner_id: str = "user"

    # Persistence
    database_path: str | None = None

    # Tool providers
    provider_disconnect_timeout: float = Field(default=1.0, gt=0)
    filesystem_server: list[str] = Field(default_factory=lambda: list(FILESYSTEM_SERVER_COMMAND))
    github_server: list[str] = Field(default_factory=lambda: list(GITHUB_SERVER_COMMAND))

    # Logging
    log_level: str = "INFO"
    log_file: str | None = "logs/codepilot.log"
    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="CODEPILOT_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def resolved_database_path(self) -> Path | None:
        """Expand the configured database path, if any."""
        if not self.database_path:
            return None
        return Path(self.database_path).expanduser()

    def log_config(self) -> LogConfig:
        """Build the logging configuration; debug mode forces DEBUG level."""
        return LogConfig(level="DEBUG" if self.debug else self.log_level, file=self.log_file)

"""Configuration settings for iodaemon.

This module provides Pydantic Settings for configuration management.
Settings are loaded from environment variables with the IO_DAEMONIZER_
prefix (and an optional .env file); keyword arguments passed to
DaemonSettings take precedence over both.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iodaemon.constants import DEFAULT_PORT, HOST

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class DaemonSettings(BaseSettings):
    """Configuration shared by the daemon and its clients.

    Port resolution order is: explicit keyword, IO_DAEMONIZER_PORT,
    then the built-in default.

    Attributes:
        port: TCP port on 127.0.0.1 the daemon listens on.
        autostart: Bring the daemon up on demand when no one is listening.
        startup_grace_seconds: Pause after an autostart before retrying.
        log_level: Logging level for both client and daemon.
        log_file: Where the detached daemon writes its log.
    """

    model_config = SettingsConfigDict(
        env_prefix="IO_DAEMONIZER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="TCP port on 127.0.0.1",
    )
    autostart: bool = Field(
        default=True,
        description="Start the daemon when a request finds nobody listening",
    )
    startup_grace_seconds: float = Field(
        default=0.2,
        ge=0.0,
        description="Seconds to wait after an autostart before retrying",
    )
    log_level: LogLevel = Field(
        default="WARNING",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_file: Path | None = Field(
        default=None,
        description="Log file for the detached daemon (stderr is /dev/null there)",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @property
    def address(self) -> tuple[str, int]:
        """(host, port) pair for socket calls."""
        return (HOST, self.port)

    def get_log_file(self) -> Path | None:
        """Get the log file path, expanding user home."""
        if self.log_file is None:
            return None
        return self.log_file.expanduser().resolve()

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Files
    config_file: str = Field(default="config.toml", validation_alias="CONFIG_FILE")
    state_file: str = Field(default="", validation_alias="STATE_FILE")

    # Online mode
    url: str = Field(default="", validation_alias="XTRADE_URL")
    ipc_socket: str = Field(default="", validation_alias="XTRADE_IPC_SOCKET")

    # Logging
    log_level: str = Field(default="", validation_alias="LOG_LEVEL")

    def state_file_override(self) -> str | None:
        return self.state_file.strip() or None

    def log_level_or(self, default: str) -> str:
        return self.log_level.strip().upper() or default

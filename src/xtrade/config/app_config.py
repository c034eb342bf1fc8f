from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Optional

import tomli_w
from pydantic import BaseModel, Field

from xtrade.settings import Settings

logger = logging.getLogger("xtrade.config")


class ApiServerConfig(BaseModel):
    port: int = Field(default=7762, ge=1, le=65535)
    bind_address: str = "127.0.0.1"
    state_file_path: str = "state.json"
    lock_timeout_seconds: float = Field(default=5.0, gt=0)


class WebClientConfig(BaseModel):
    is_enabled: bool = True
    port: int = Field(default=7764, ge=1, le=65535)
    bind_address: str = "0.0.0.0"
    static_files_path: str = "webui/dist"


class WebhookServerConfig(BaseModel):
    is_enabled: bool = False
    port: int = Field(default=7763, ge=1, le=65535)
    bind_address: str = "0.0.0.0"


class RemoteServerConfig(BaseModel):
    api_url: str = "http://localhost:7762"


class LocalStateConfig(BaseModel):
    state_file_path: str = "state.json"


class IpcConfig(BaseModel):
    is_enabled: bool = True
    socket_path: str = "xtrade.sock"


class AppConfig(BaseModel):
    api_server: ApiServerConfig = Field(default_factory=ApiServerConfig)
    web_client: WebClientConfig = Field(default_factory=WebClientConfig)
    webhook_server: WebhookServerConfig = Field(default_factory=WebhookServerConfig)
    remote_server: RemoteServerConfig = Field(default_factory=RemoteServerConfig)
    local_state: LocalStateConfig = Field(default_factory=LocalStateConfig)
    ipc: IpcConfig = Field(default_factory=IpcConfig)

    def validate_logic(self) -> None:
        ports = {"api_server": self.api_server.port}
        if self.web_client.is_enabled:
            ports["web_client"] = self.web_client.port
        if self.webhook_server.is_enabled:
            ports["webhook_server"] = self.webhook_server.port
        if len(set(ports.values())) != len(ports):
            raise ValueError(f"enabled servers must use distinct ports: {ports}")
        if not self.remote_server.api_url.startswith(("http://", "https://")):
            raise ValueError("remote_server.api_url must be an http(s) URL")

    def snapshot(self) -> dict[str, object]:
        return self.model_dump(mode="json")


def default_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return path
    return Path(Settings().config_file)


def save_app_config(cfg: AppConfig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tomli_w.dumps(cfg.model_dump(mode="json")), encoding="utf-8")
    logger.info("config_saved", extra={"path": str(path)})


def load_app_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load the TOML config, or fall back to defaults.

    Unlike the state file, a missing or invalid config is not an error: the
    defaults are used and written back to ``path`` so the user has a file to
    edit. A failure to write them is logged and otherwise ignored.
    """
    path = default_config_path(path)
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
        cfg = AppConfig.model_validate(raw)
        cfg.validate_logic()
        logger.info("config_loaded", extra={"path": str(path)})
        return cfg
    except (OSError, ValueError) as e:
        # ValueError covers TOMLDecodeError and pydantic's ValidationError.
        logger.warning("config_fallback_to_defaults", extra={"path": str(path), "reason": str(e)})

    cfg = AppConfig()
    try:
        save_app_config(cfg, path)
    except OSError as e:
        logger.error("config_save_failed", extra={"path": str(path), "reason": str(e)})
    return cfg

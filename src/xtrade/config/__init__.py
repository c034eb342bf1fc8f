__all__ = [
    "AppConfig",
    "default_config_path",
    "load_app_config",
    "save_app_config",
]

from xtrade.config.app_config import (
    AppConfig,
    default_config_path,
    load_app_config,
    save_app_config,
)

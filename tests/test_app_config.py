import tomllib
from pathlib import Path

import pytest

from xtrade.config import AppConfig, load_app_config, save_app_config


def test_defaults_match_documented_values() -> None:
    cfg = AppConfig()
    cfg.validate_logic()

    assert cfg.api_server.port == 7762
    assert cfg.api_server.bind_address == "127.0.0.1"
    assert cfg.web_client.port == 7764
    assert cfg.webhook_server.port == 7763
    assert cfg.webhook_server.is_enabled is False
    assert cfg.remote_server.api_url == "http://localhost:7762"
    assert cfg.local_state.state_file_path == "state.json"


def test_missing_config_file_is_created_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    cfg = load_app_config(path)

    assert cfg == AppConfig()
    assert path.exists()
    assert tomllib.loads(path.read_text(encoding="utf-8"))["api_server"]["port"] == 7762


@pytest.mark.parametrize(
    "content",
    [
        "this is = = not toml",
        "[api_server]\nport = 0\n",
        "[web_client]\nis_enabled = true\nport = 7762\n",
        '[remote_server]\napi_url = "ftp://host"\n',
    ],
)
def test_invalid_config_falls_back_to_defaults_and_rewrites(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.toml"
    path.write_text(content, encoding="utf-8")

    cfg = load_app_config(path)

    assert cfg == AppConfig()
    assert tomllib.loads(path.read_text(encoding="utf-8")) == AppConfig().snapshot()


def test_saved_config_loads_back(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    cfg = AppConfig()
    cfg.api_server.port = 9000
    cfg.local_state.state_file_path = "data/bots.json"
    cfg.ipc.is_enabled = False
    save_app_config(cfg, path)

    loaded = load_app_config(path)

    assert loaded == cfg


def test_partial_config_keeps_defaults_for_missing_sections(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("[api_server]\nport = 8100\n", encoding="utf-8")

    cfg = load_app_config(path)

    assert cfg.api_server.port == 8100
    assert cfg.web_client == AppConfig().web_client

from xtrade.settings import Settings


def test_state_file_override_is_none_when_blank() -> None:
    settings = Settings(STATE_FILE="   ")
    assert settings.state_file_override() is None

    settings = Settings(STATE_FILE="data/state.json")
    assert settings.state_file_override() == "data/state.json"


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("CONFIG_FILE", "custom.toml")
    monkeypatch.setenv("XTRADE_URL", "http://example.test:7762")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    settings = Settings()

    assert settings.config_file == "custom.toml"
    assert settings.url == "http://example.test:7762"
    assert settings.log_level == "DEBUG"


def test_log_level_or_falls_back_when_unset() -> None:
    assert Settings(LOG_LEVEL="").log_level_or("INFO") == "INFO"
    assert Settings(LOG_LEVEL="debug").log_level_or("INFO") == "DEBUG"

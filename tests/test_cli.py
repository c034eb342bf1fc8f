import json
from pathlib import Path

import httpx
import pytest
from typer.testing import CliRunner

from xtrade import cli
from xtrade.cli import app
from xtrade.config import AppConfig, save_app_config
from xtrade.persistence import StateFile
from xtrade.remote import RemoteClient

runner = CliRunner()


@pytest.fixture()
def workdir(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in ("XTRADE_URL", "XTRADE_IPC_SOCKET", "STATE_FILE", "CONFIG_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    save_app_config(AppConfig(), tmp_path / "config.toml")
    return tmp_path


def _invoke(workdir: Path, *args: str):
    return runner.invoke(app, ["--state", str(workdir / "state.json"), *args])


def test_add_then_list_bots(workdir: Path) -> None:
    result = _invoke(
        workdir, "add-bot", "--name", "TestBot", "--exchange", "Binance", "--trading-fee", "0.1"
    )
    assert result.exit_code == 0, result.output
    bot = json.loads(result.stdout)
    assert bot["name"] == "TestBot"
    assert bot["trading_fee"] == 0.1

    result = _invoke(workdir, "list-bots")
    assert result.exit_code == 0, result.output
    assert [b["id"] for b in json.loads(result.stdout)] == [bot["id"]]


def test_missing_bot_exits_with_not_found_code(workdir: Path) -> None:
    result = _invoke(workdir, "get-bot", "--bot-id", "5")
    assert result.exit_code == 3
    assert "not_found" in result.output


def test_invalid_input_exits_with_validation_code(workdir: Path) -> None:
    result = _invoke(workdir, "add-bot", "--name", " ", "--exchange", "Binance")
    assert result.exit_code == 2
    assert "validation" in result.output


def test_corrupt_state_exits_with_persistence_code(workdir: Path) -> None:
    (workdir / "state.json").write_text("{broken", encoding="utf-8")
    result = _invoke(workdir, "list-bots")
    assert result.exit_code == 5
    assert (workdir / "state.json").read_text(encoding="utf-8") == "{broken"


def test_listener_commands_and_clear_all(workdir: Path) -> None:
    bot = json.loads(_invoke(workdir, "add-bot", "--name", "A", "--exchange", "B").stdout)
    bot_id = str(bot["id"])

    result = _invoke(workdir, "add-listener", "--bot-id", bot_id, "--service", "Telegram")
    assert result.exit_code == 0, result.output
    listener = json.loads(result.stdout)

    result = _invoke(
        workdir,
        "update-listener",
        "--bot-id",
        bot_id,
        "--listener-id",
        str(listener["id"]),
        "--msg",
        "hello",
    )
    assert json.loads(result.stdout)["msg"] == "hello"

    result = _invoke(workdir, "delete-listeners", "--bot-id", bot_id)
    assert json.loads(result.stdout) == {"deleted": 1}

    result = _invoke(workdir, "clear-all", "--target", "bots")
    assert json.loads(result.stdout) == {"deleted": 1}

    result = _invoke(workdir, "clear-all", "--target", "everything")
    assert result.exit_code == 2


def test_state_and_url_are_mutually_exclusive(workdir: Path) -> None:
    result = runner.invoke(
        app, ["--state", "s.json", "--url", "http://localhost:7762", "list-bots"]
    )
    assert result.exit_code == 2


def test_default_state_path_comes_from_config(workdir: Path) -> None:
    cfg = AppConfig()
    cfg.local_state.state_file_path = str(workdir / "from-config.json")
    save_app_config(cfg, workdir / "config.toml")

    result = runner.invoke(app, ["add-bot", "--name", "A", "--exchange", "B"])

    assert result.exit_code == 0, result.output
    assert (workdir / "from-config.json").exists()


def test_held_state_lock_exits_with_timeout_code(workdir: Path) -> None:
    cfg = AppConfig()
    cfg.api_server.lock_timeout_seconds = 0.1
    save_app_config(cfg, workdir / "config.toml")
    state = StateFile(workdir / "state.json")

    with state.locked(timeout_seconds=1.0):
        result = _invoke(workdir, "list-bots")

    assert result.exit_code == 6
    assert "timeout" in result.output


def test_conflict_from_server_exits_with_conflict_code(workdir: Path, monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"error": "bot id 1 already exists", "kind": "conflict"})

    def remote_client(*, base_url: str) -> RemoteClient:
        return RemoteClient(base_url=base_url, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(cli, "RemoteClient", remote_client)
    result = runner.invoke(
        app, ["--url", "http://localhost:7762", "add-bot", "--name", "A", "--exchange", "B"]
    )

    assert result.exit_code == 4
    assert "conflict" in result.output


def test_server_refuses_ipc_socket_path_that_is_a_file(workdir: Path, monkeypatch) -> None:
    calls: list[object] = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda *a, **kw: calls.append(a))
    victim = workdir / "notes.json"
    victim.write_text("{}", encoding="utf-8")

    result = runner.invoke(
        app, ["server", "--state", str(workdir / "state.json"), "--ipc-socket", str(victim)]
    )

    assert result.exit_code == 2
    assert victim.read_text(encoding="utf-8") == "{}"
    assert calls == []


def test_server_with_no_ipc_skips_the_socket(workdir: Path, monkeypatch) -> None:
    captured: dict[str, object] = {}

    def fake_run(api, **kwargs) -> None:
        captured["api"] = api
        captured.update(kwargs)

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    victim = workdir / "notes.json"
    victim.write_text("{}", encoding="utf-8")

    result = runner.invoke(
        app,
        [
            "server",
            "--state",
            str(workdir / "state.json"),
            "--ipc-socket",
            str(victim),
            "--no-ipc",
            "--port",
            "9100",
        ],
    )

    assert result.exit_code == 0, result.output
    assert captured["port"] == 9100
    assert captured["host"] == "127.0.0.1"
    assert victim.read_text(encoding="utf-8") == "{}"

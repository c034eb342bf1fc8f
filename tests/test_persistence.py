import json
import os
import threading
from pathlib import Path

import pytest

from xtrade.errors import LockTimeoutError, PersistenceError
from xtrade.persistence import StateFile
from xtrade.schemas import BotCreate, ListenerCreate
from xtrade.store import Store


def test_load_creates_missing_file_with_empty_state(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"
    store = StateFile(path).load()

    assert store.list_bots() == []
    assert path.exists()
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["bots"] == {}
    assert data["next_bot_id"] == 1


def test_load_rejects_corrupt_file_and_leaves_it_alone(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        StateFile(path).load()
    assert path.read_text(encoding="utf-8") == "{not json"


@pytest.mark.parametrize(
    "content",
    [
        '{"bots": {"1": {"name": "", "exchange": "Binance"}}}',
        '{"bots": {"1": {"name": "   ", "exchange": "Binance"}}}',
        '{"bots": {"1": {"name": "Bot", "exchange": " "}}}',
        '{"bots": {"1": {"name": "Bot", "exchange": "Binance", "trading_fee": Infinity}}}',
        '{"bots": {"1": {"name": "Bot", "exchange": "Binance", "trading_fee": "Infinity"}}}',
        '{"bots": {"1": {"name": "Bot", "exchange": "Binance", "trading_fee": NaN}}}',
        '{"bots": {"1": {"name": "Bot", "exchange": "Binance", "trading_fee": -1}}}',
        '{"bots": {"1": {"name": "Bot", "exchange": "Binance",'
        ' "listeners": {"2": {"service": "  "}}}}}',
    ],
)
def test_load_rejects_invalid_records(tmp_path: Path, content: str) -> None:
    path = tmp_path / "state.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(PersistenceError):
        StateFile(path).load()
    assert path.read_text(encoding="utf-8") == content


def test_save_then_load_round_trips_bots_listeners_and_counters(tmp_path: Path) -> None:
    state = StateFile(tmp_path / "state.json")
    store = Store(config={"api_server": {"port": 7762}})
    bot = store.add_bot(BotCreate(name="TestBot", exchange="Binance", trading_fee=0.1, api_secret="s"))
    listener = store.add_listener(bot.id, ListenerCreate(service="Telegram", secret="x"))
    removed = store.add_bot(BotCreate(name="Gone", exchange="Kraken"))
    store.delete_bot(removed.id)

    state.save(store)
    assert store.dirty is False

    loaded = state.load()
    assert loaded.list_bots() == store.list_bots()
    assert loaded.get_listener(bot.id, listener.id) == listener
    assert loaded.config == {"api_server": {"port": 7762}}
    assert loaded.next_bot_id == store.next_bot_id
    assert loaded.next_listener_id == store.next_listener_id
    assert loaded.add_bot(BotCreate(name="New", exchange="Binance")).id > removed.id


def test_failed_save_keeps_previous_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "state.json"
    state = StateFile(path)
    store = state.load()
    store.add_bot(BotCreate(name="First", exchange="Binance"))
    state.save(store)
    before = path.read_text(encoding="utf-8")

    store.add_bot(BotCreate(name="Second", exchange="Binance"))

    def failing_replace(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", failing_replace)
    with pytest.raises(PersistenceError):
        state.save(store)

    assert path.read_text(encoding="utf-8") == before
    assert store.dirty is True
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []


def test_locked_times_out_while_another_holder_has_the_lock(tmp_path: Path) -> None:
    state = StateFile(tmp_path / "state.json")
    acquired = threading.Event()
    release = threading.Event()

    def holder() -> None:
        with state.locked(timeout_seconds=1.0):
            acquired.set()
            release.wait(timeout=5.0)

    t = threading.Thread(target=holder)
    t.start()
    try:
        assert acquired.wait(timeout=5.0)
        with pytest.raises(LockTimeoutError):
            with state.locked(timeout_seconds=0.1):
                pass
    finally:
        release.set()
        t.join()

    with state.locked(timeout_seconds=0.1):
        pass

import json
import threading
from pathlib import Path

import pytest

from xtrade.errors import LockTimeoutError, PersistenceError
from xtrade.online import LocalClient, ReadWriteLock, SharedStore
from xtrade.persistence import StateFile
from xtrade.schemas import BotCreate, BotUpdate
from xtrade.store import Store


def test_write_lock_times_out_while_reader_holds_it() -> None:
    lock = ReadWriteLock()
    lock.acquire_read(timeout_seconds=1.0)
    try:
        with pytest.raises(LockTimeoutError):
            lock.acquire_write(timeout_seconds=0.05)
        # The failed writer must not block later readers.
        with lock.reading(timeout_seconds=0.05):
            pass
    finally:
        lock.release_read()

    with lock.writing(timeout_seconds=0.05):
        with pytest.raises(LockTimeoutError):
            lock.acquire_read(timeout_seconds=0.05)


def test_mutations_are_written_through(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    shared = SharedStore.open(StateFile(path))
    client = LocalClient(shared)

    bot = client.add_bot(BotCreate(name="TestBot", exchange="Binance"))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert list(data["bots"]) == [str(bot.id)]
    assert StateFile(path).load().list_bots() == [bot]


def test_concurrent_updates_of_one_bot_stay_consistent(tmp_path: Path) -> None:
    shared = SharedStore.open(StateFile(tmp_path / "state.json"))
    client = LocalClient(shared)
    bot = client.add_bot(BotCreate(name="TestBot", exchange="Binance"))
    errors: list[Exception] = []

    def worker(n: int) -> None:
        try:
            for _ in range(10):
                client.update_bot(bot.id, BotUpdate(name=f"name-{n}", exchange=f"exchange-{n}"))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    final = client.get_bot(bot.id)
    assert final.name.split("-")[1] == final.exchange.split("-")[1]


def test_concurrent_adds_get_distinct_ids() -> None:
    client = LocalClient(SharedStore(store=Store()))
    ids: list[int] = []
    guard = threading.Lock()

    def worker() -> None:
        for _ in range(25):
            view = client.add_bot(BotCreate(name="bot", exchange="Binance"))
            with guard:
                ids.append(view.id)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(ids) == 100
    assert len(set(ids)) == 100


def test_failed_save_rolls_back_memory(tmp_path: Path, monkeypatch) -> None:
    state = StateFile(tmp_path / "state.json")
    shared = SharedStore.open(state)
    client = LocalClient(shared)
    bot = client.add_bot(BotCreate(name="TestBot", exchange="Binance"))

    def failing_save(store: Store) -> None:
        raise PersistenceError("disk full")

    monkeypatch.setattr(state, "save", failing_save)

    with pytest.raises(PersistenceError):
        client.update_bot(bot.id, BotUpdate(name="Renamed"))
    with pytest.raises(PersistenceError):
        client.add_bot(BotCreate(name="Other", exchange="Kraken"))

    assert client.list_bots() == [bot]

    monkeypatch.undo()
    added = client.add_bot(BotCreate(name="Other", exchange="Kraken"))
    assert added.id == bot.id + 1


def test_open_refuses_corrupt_state(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(PersistenceError):
        SharedStore.open(StateFile(path))

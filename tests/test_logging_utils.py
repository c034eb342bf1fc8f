import io
import json
import logging

from xtrade.logging_utils import configure_logging, verbosity_level


def test_json_lines_carry_extras() -> None:
    stream = io.StringIO()
    configure_logging("INFO", stream=stream)

    logging.getLogger("xtrade.store").info("bot_added", extra={"bot_id": 3, "ignored": "x"})

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert line["msg"] == "bot_added"
    assert line["logger"] == "xtrade.store"
    assert line["bot_id"] == 3
    assert "ignored" not in line


def test_verbosity_level() -> None:
    assert verbosity_level(0) == "WARNING"
    assert verbosity_level(0, default="INFO") == "INFO"
    assert verbosity_level(1) == "INFO"
    assert verbosity_level(3) == "DEBUG"

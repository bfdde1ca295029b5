"""Unit tests for logging infrastructure."""
import pytest
import logging
import threading
from pathlib import Path
from unittest.mock import patch
from chaptr.infrastructure.logging import RetryingFileHandler, setup_logging


def test_setup_logging_creates_log_file(tmp_path):
    logger = setup_logging(tmp_path, debug=False)
    logger.info("hello")

    assert isinstance(logger, logging.Logger)
    assert (tmp_path / "chaptr.log").exists()


def test_setup_logging_custom_path(tmp_path):
    log_path = tmp_path / "logs" / "run.log"
    setup_logging(tmp_path, log_path=log_path)

    assert log_path.exists()
    assert not (tmp_path / "chaptr.log").exists()


def test_setup_logging_debug_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=True)
    assert logger.getEffectiveLevel() == logging.DEBUG


def test_setup_logging_normal_mode(tmp_path):
    logger = setup_logging(tmp_path, debug=False)
    assert logger.getEffectiveLevel() == logging.INFO


def test_log_line_has_timestamp_level_and_thread(tmp_path):
    setup_logging(tmp_path, debug=False)

    def worker():
        logging.getLogger("chaptr.test").info("from worker")

    t = threading.Thread(target=worker, name="job_7")
    t.start()
    t.join()

    content = (tmp_path / "chaptr.log").read_text()
    line = next(l for l in content.splitlines() if "from worker" in l)
    assert " - INFO - [job_7] from worker" in line
    assert line[:4].isdigit()  # starts with the year


def test_debug_messages_only_in_debug_mode(tmp_path):
    setup_logging(tmp_path, debug=False)
    logging.getLogger("chaptr.test").debug("hidden message")
    assert "hidden message" not in (tmp_path / "chaptr.log").read_text()

    setup_logging(tmp_path, debug=True)
    logging.getLogger("chaptr.test").debug("visible message")
    assert "visible message" in (tmp_path / "chaptr.log").read_text()


def test_retrying_handler_retries_then_writes(tmp_path):
    handler = RetryingFileHandler(tmp_path / "x.log", min_delay=0, max_delay=0)
    handler.setFormatter(logging.Formatter("%(message)s"))
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "after retry", None, None)

    real_open = open
    calls = {"n": 0}

    def flaky_open(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] < 3:
            raise PermissionError("locked")
        return real_open(*args, **kwargs)

    with patch("builtins.open", side_effect=flaky_open):
        handler.emit(record)

    assert calls["n"] == 3
    assert (tmp_path / "x.log").read_text() == "after retry\n"
    assert handler.dropped == 0


def test_retrying_handler_drops_after_attempts(tmp_path):
    handler = RetryingFileHandler(tmp_path / "x.log", attempts=4, min_delay=0, max_delay=0)
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "lost", None, None)

    with patch("builtins.open", side_effect=OSError("locked")) as mock_open, \
            patch("chaptr.infrastructure.logging.time.sleep") as mock_sleep:
        handler.emit(record)  # must not raise

    assert mock_open.call_count == 4
    assert mock_sleep.call_count == 3
    assert handler.dropped == 1


def test_concurrent_writers_do_not_interleave(tmp_path):
    setup_logging(tmp_path)
    logger = logging.getLogger("chaptr.test")

    def worker(n):
        for i in range(50):
            logger.info(f"worker={n} line={i}")

    threads = [threading.Thread(target=worker, args=(n,), name=f"job_{n}") for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    lines = [l for l in (tmp_path / "chaptr.log").read_text().splitlines() if "worker=" in l]
    assert len(lines) == 200
    assert all(l.count(" - INFO - ") == 1 for l in lines)

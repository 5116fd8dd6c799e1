"""Tests for structured log formatting."""

import io
import logging
import threading

from hybridrec.logging import StructuredFormatter, get_logger, setup_logging


def _record(msg, **extra):
    record = logging.LogRecord("hybridrec.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_format_includes_context():
    line = StructuredFormatter().format(_record("Processed learning batch", context={"size": 3, "loss": 0.123456789}))

    parts = line.split(" | ")
    assert parts[1].strip() == "INFO"
    assert parts[2] == "hybridrec.test"
    assert parts[3] == "Processed learning batch"
    assert parts[4] == "size=3 loss=0.123457"


def test_worker_thread_is_tagged():
    records = []

    def emit():
        records.append(_record("step"))

    worker = threading.Thread(target=emit, name="trainer-1")
    worker.start()
    worker.join()

    assert "[trainer-1]" in StructuredFormatter().format(records[0])
    assert "[" not in StructuredFormatter().format(_record("main"))


def test_setup_logging_is_idempotent():
    stream = io.StringIO()
    setup_logging("DEBUG", stream=stream)
    setup_logging("DEBUG", stream=stream)

    get_logger("hybridrec.test").debug("hello")

    assert stream.getvalue().count("hello") == 1
    assert logging.getLogger("aiosqlite").level == logging.WARNING

    setup_logging("WARNING")

import logging
import threading
from datetime import datetime
from types import SimpleNamespace

import pytest
from flask import Flask, g

from app.portal import logs
from app.portal.logs import AccountFilter, BackupFileHandler, configure_logging, innermost, log_exception


class _FixedDatetime(datetime):
    @classmethod
    def now(cls, tz=None):
        return cls(2026, 1, 2, 3, 4, 5)


@pytest.fixture()
def logger():
    log = logging.getLogger("tests.file_log")
    log.propagate = False
    log.setLevel(logging.INFO)
    yield log
    for h in list(log.handlers):
        log.removeHandler(h)


def _handler(directory, backup_size=1024 * 1024) -> BackupFileHandler:
    handler = BackupFileHandler(directory, backup_size)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def test_entry_block_format(tmp_path, logger):
    logger.addHandler(_handler(tmp_path / "Logs"))
    logger.info("first")
    logger.info("second", extra={"account_id": 7})

    text = (tmp_path / "Logs" / "Log.txt").read_text(encoding="utf-8")
    blocks = text.split("\n\n")
    assert blocks[0].splitlines()[0].startswith("Time   : ")
    assert blocks[0].splitlines()[1:] == ["Account: ", "Message: first"]
    assert blocks[1].splitlines()[1:] == ["Account: 7", "Message: second"]
    assert text.endswith("\n\n")


def test_directory_is_created_on_first_write(tmp_path, logger):
    directory = tmp_path / "nested" / "Logs"
    logger.addHandler(_handler(directory))
    assert not directory.exists()
    logger.warning("hello")
    assert (directory / "Log.txt").exists()


def test_backup_when_size_reached(tmp_path, logger, monkeypatch):
    monkeypatch.setattr(logs, "datetime", _FixedDatetime)
    logger.addHandler(_handler(tmp_path, backup_size=200))

    logger.info("x" * 300)
    backup = tmp_path / "Log 2026-01-02 030405.txt"
    assert backup.exists()
    assert "x" * 300 in backup.read_text(encoding="utf-8")
    assert not (tmp_path / "Log.txt").exists()

    logger.info("small")
    assert "Message: small" in (tmp_path / "Log.txt").read_text(encoding="utf-8")


def test_backup_name_collision_gets_suffix(tmp_path, logger, monkeypatch):
    monkeypatch.setattr(logs, "datetime", _FixedDatetime)
    logger.addHandler(_handler(tmp_path, backup_size=1))

    logger.info("one")
    logger.info("two")
    logger.info("three")

    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == [
        "Log 2026-01-02 030405 (1).txt",
        "Log 2026-01-02 030405 (2).txt",
        "Log 2026-01-02 030405.txt",
    ]
    assert "Message: two" in (tmp_path / "Log 2026-01-02 030405 (1).txt").read_text(encoding="utf-8")


def test_concurrent_writers_do_not_interleave(tmp_path, logger):
    logger.addHandler(_handler(tmp_path))

    def write(n):
        for i in range(25):
            logger.info("thread-%d-%d", n, i)

    threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    blocks = [b for b in (tmp_path / "Log.txt").read_text(encoding="utf-8").split("\n\n") if b]
    assert len(blocks) == 100
    assert all(len(b.splitlines()) == 3 for b in blocks)


def test_account_filter_reads_current_account():
    app = Flask(__name__)
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    with app.test_request_context("/"):
        g.current_account = SimpleNamespace(id=42)
        AccountFilter().filter(record)
    assert record.account_id == 42

    outside = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    AccountFilter().filter(outside)
    assert outside.account_id is None


def test_innermost_follows_cause_chain():
    try:
        try:
            raise KeyError("root")
        except KeyError as e:
            raise RuntimeError("wrapper") from e
    except RuntimeError as exc:
        assert isinstance(innermost(exc), KeyError)


def test_log_exception_writes_innermost_with_trace(tmp_path, logger):
    logger.addHandler(_handler(tmp_path))
    try:
        try:
            raise ValueError("bad value")
        except ValueError as e:
            raise RuntimeError("outer") from e
    except RuntimeError as exc:
        log_exception(logger, exc)

    text = (tmp_path / "Log.txt").read_text(encoding="utf-8")
    assert "Message: ValueError: bad value" in text
    assert "test_log_exception_writes_innermost_with_trace" in text
    assert "outer" not in text


def test_configure_logging_replaces_previous_handler(tmp_path):
    first = Flask("app.portal")
    first.config.update(APPLICATION_PATH=str(tmp_path), LOGGER_PATH="Logs", LOGGER_BACKUP_SIZE=1024)
    second = Flask("app.portal")
    second.config.update(APPLICATION_PATH=str(tmp_path), LOGGER_PATH="Other", LOGGER_BACKUP_SIZE=1024)

    configure_logging(first)
    handler = configure_logging(second)

    file_handlers = [h for h in second.logger.handlers if isinstance(h, BackupFileHandler)]
    assert file_handlers == [handler]
    assert second.extensions["log_handler"] is handler
    assert handler.path == tmp_path / "Other" / "Log.txt"


def test_unhandled_error_is_logged(tmp_path, monkeypatch):
    from app.portal import create_app
    from app.portal.authorization import PermissionCatalog, allow_anonymous

    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("APPLICATION_PATH", str(tmp_path))

    app = create_app()

    @app.get("/boom")
    @allow_anonymous
    def boom():
        raise ZeroDivisionError("kaboom")

    app.extensions["permission_catalog"] = PermissionCatalog.from_app(app)

    r = app.test_client().get("/boom")
    assert r.status_code == 500

    text = (tmp_path / "Logs" / "Log.txt").read_text(encoding="utf-8")
    assert "ZeroDivisionError: kaboom" in text

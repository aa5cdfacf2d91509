"""
Plain-text application log with size-triggered backups.

Each entry is a small block (time, account, message, blank line) appended to
``<directory>/Log.txt``. Once the active file reaches ``backup_size`` bytes it is
renamed to ``Log yyyy-MM-dd HHmmss.txt`` and the next entry starts a new file.
"""
from __future__ import annotations

import logging
import os
import threading
import traceback
from datetime import datetime
from pathlib import Path

from flask import Flask, g, has_app_context

# One writer for every handler instance: appends and renames must not interleave.
_write_lock = threading.Lock()


class AccountFilter(logging.Filter):
    """Stamp records with the id of the account behind the current request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "account_id"):
            account = getattr(g, "current_account", None) if has_app_context() else None
            record.account_id = account.id if account is not None else None
        return True


class BackupFileHandler(logging.Handler):
    def __init__(self, directory: str | os.PathLike, backup_size: int, filename: str = "Log.txt"):
        super().__init__()
        self.directory = Path(directory)
        self.backup_size = backup_size
        self.filename = filename
        self.addFilter(AccountFilter())

    @property
    def path(self) -> Path:
        return self.directory / self.filename

    def format_entry(self, record: logging.LogRecord) -> str:
        account_id = getattr(record, "account_id", None)
        return (
            f"Time   : {datetime.fromtimestamp(record.created):%Y-%m-%d %H:%M:%S}\n"
            f"Account: {'' if account_id is None else account_id}\n"
            f"Message: {self.format(record)}\n"
            "\n"
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self.format_entry(record)
            with _write_lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(entry)
                if self.path.stat().st_size >= self.backup_size:
                    self._backup()
        except Exception:
            self.handleError(record)

    def _backup(self) -> Path:
        stem = f"Log {datetime.now():%Y-%m-%d %H%M%S}"
        target = self.directory / f"{stem}.txt"
        n = 1
        while target.exists():
            target = self.directory / f"{stem} ({n}).txt"
            n += 1
        os.replace(self.path, target)
        return target


def innermost(exc: BaseException) -> BaseException:
    seen = {id(exc)}
    while True:
        inner = exc.__cause__ or exc.__context__
        if inner is None or id(inner) in seen:
            return exc
        seen.add(id(inner))
        exc = inner


def log_exception(logger: logging.Logger, exc: BaseException) -> None:
    exc = innermost(exc)
    trace = "".join(traceback.format_tb(exc.__traceback__))
    logger.error("%s: %s\n%s", type(exc).__qualname__, exc, trace.rstrip())


def configure_logging(app: Flask) -> BackupFileHandler:
    directory = Path(app.config["APPLICATION_PATH"]) / app.config["LOGGER_PATH"]
    handler = BackupFileHandler(directory, int(app.config["LOGGER_BACKUP_SIZE"]))
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("%(message)s"))
    # app.logger is the "app.portal" logger, so module loggers propagate into it.
    # It is process-global: drop the handler of any previously created app.
    for old in [h for h in app.logger.handlers if isinstance(h, BackupFileHandler)]:
        app.logger.removeHandler(old)
    app.logger.addHandler(handler)
    if app.logger.level == logging.NOTSET or app.logger.level > logging.INFO:
        app.logger.setLevel(logging.INFO)
    app.extensions["log_handler"] = handler
    return handler

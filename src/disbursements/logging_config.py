from __future__ import annotations

import json
import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Domain loggers that also write to their own file under the logs dir.
DOMAIN_LOG_FILES: dict[str, str] = {
    "disbursements.pda": "pda.log",
    "disbursements.pricing": "pda.log",
    "disbursements.fda": "fda.log",
    "disbursements.fx": "fx.log",
}

_EVENT_RE = re.compile(r"^[a-z][a-z0-9_]*$")


def split_event(message: str) -> tuple[str | None, dict[str, str]]:
    """Split an "event key=value ..." message into its event name and fields."""
    head, _, rest = message.partition(" ")
    if not _EVENT_RE.match(head):
        return None, {}
    fields: dict[str, str] = {}
    for token in rest.split():
        key, sep, value = token.partition("=")
        if sep and key:
            fields[key] = value
    if not fields:
        return None, {}
    return head, fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        event, fields = split_event(message)
        if event is not None:
            payload["event"] = event
            payload["fields"] = fields
            if "tenant" in fields:
                payload["tenant"] = fields["tenant"]
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def attach_domain_logs(logs_dir: Path) -> None:
    """Give each domain logger its file handler; calling twice adds nothing."""
    logs_dir.mkdir(parents=True, exist_ok=True)
    handlers: dict[str, RotatingFileHandler] = {}
    for name, filename in DOMAIN_LOG_FILES.items():
        path = os.path.abspath(logs_dir / filename)
        logger = logging.getLogger(name)
        logger.setLevel(logging.INFO)
        if any(getattr(h, "baseFilename", None) == path for h in logger.handlers):
            continue
        # Loggers mapped to the same file share one handler.
        if path not in handlers:
            handlers[path] = _handler(Path(path), logging.INFO)
        logger.addHandler(handlers[path])


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))
    attach_domain_logs(logs_dir)

"""Structured logging helpers shared across crawl and export components."""

from __future__ import annotations

import gzip
import json
import logging
import re
import sys
import uuid
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

__all__ = [
    "JSONFormatter",
    "StructuredLogger",
    "setup_logging",
    "generate_correlation_id",
    "mask_sensitive_data",
]

ROOT_LOGGER_NAME = "JvmMeta"

_SENSITIVE_KEYS = {"authorization", "api_key", "apikey", "token", "github_token", "secret", "password"}
_TOKEN_PATTERN = re.compile(r"^(gh[pousr]_[A-Za-z0-9]{20,}|[A-Za-z0-9+/=_-]{40,})$")


def generate_correlation_id() -> str:
    """Return a short identifier that ties together the log lines of one run."""

    return uuid.uuid4().hex[:12]


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with common secret fields masked."""

    def _mask_value(value: object, key_hint: Optional[str] = None) -> object:
        if isinstance(value, dict):
            return {key: _mask_value(item, str(key).lower()) for key, item in value.items()}
        if isinstance(value, list):
            return [_mask_value(item, key_hint) for item in value]
        if key_hint in _SENSITIVE_KEYS and value is not None:
            return "***masked***"
        if isinstance(value, str) and _TOKEN_PATTERN.match(value):
            return "***masked***"
        return value

    return {key: _mask_value(value, key.lower()) for key, value in payload.items()}


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries for crawl and export runs."""

    _EXTRA_KEYS = ("vendor", "stage", "url", "unit", "error", "summary", "status_code")

    def format(self, record: logging.LogRecord) -> str:
        """Render ``record`` as a JSON string with run-specific fields."""

        now = datetime.now(timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        for key in self._EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter that adds run context to every record without dropping call-site ``extra``."""

    def __init__(self, logger: logging.Logger, base_fields: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(logger, {})
        self.base_fields: Dict[str, Any] = dict(base_fields or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        extra = dict(self.base_fields)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: object) -> "StructuredLogger":
        """Return a child adapter carrying ``fields`` in addition to the current context."""

        merged = dict(self.base_fields)
        merged.update({key: value for key, value in fields.items() if value is not None})
        return StructuredLogger(self.logger, merged)


def _compress_old_log(path: Path) -> None:
    """Compress ``path`` into a ``.gz`` file and remove the original."""

    compressed_path = path.with_suffix(path.suffix + ".gz")
    with path.open("rb") as source, gzip.open(compressed_path, "wb") as target:
        target.write(source.read())
    path.unlink(missing_ok=True)


def _cleanup_logs(log_dir: Path, retention_days: int) -> List[str]:
    """Compress or purge log files in ``log_dir`` based on retention policy."""

    actions: List[str] = []
    now = datetime.now(timezone.utc)
    retention_delta = timedelta(days=retention_days)
    for file in log_dir.glob("*.jsonl"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            _compress_old_log(file)
            actions.append(f"Compressed {file.name}")
    for file in log_dir.glob("*.jsonl.gz"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            file.unlink(missing_ok=True)
            actions.append(f"Deleted expired archive {file.name}")
    return actions


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_console: bool = False,
    retention_days: int = 14,
    max_log_size_mb: int = 50,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the ``JvmMeta`` logger with a console handler and optional JSON sidecar.

    Handlers installed by a previous call are replaced, so the function is safe
    to call more than once (the CLI does so after loading configuration).
    """

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_jvmmeta_managed", False):
            logger.removeHandler(handler)
            if isinstance(handler, logging.StreamHandler):
                stream = getattr(handler, "stream", None)
                if stream in (sys.stdout, sys.stderr):
                    continue
            handler.close()

    console_formatter: logging.Formatter
    if json_console:
        console_formatter = JSONFormatter()
    else:
        console_formatter = logging.Formatter("%(levelname)s: %(message)s")
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(console_formatter)
    stream_handler._jvmmeta_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        _cleanup_logs(log_dir, retention_days)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            log_dir / f"jvm-meta-{today}.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._jvmmeta_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger

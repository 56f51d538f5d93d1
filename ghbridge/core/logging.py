from __future__ import annotations

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from ghbridge.utils.paths import ensure_dir


# fragmentos key=value del mensaje (estilo de logs del proyecto)
_FIELD_RE = re.compile(r"\b([a-z_]+)=(\S+)")


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        payload = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        fields = dict(_FIELD_RE.findall(msg))
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", log_dir: str | Path | None = None) -> logging.Logger:
    """Configura el logger raíz del proyecto una sola vez (consola + archivo JSON)."""
    logger = logging.getLogger("ghbridge")
    if logger.handlers:
        return logger
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Consola (humano)
    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(logger.level)
    sh.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(sh)

    # Archivo (JSON, rotación)
    if log_dir is not None:
        log_file = ensure_dir(log_dir) / "ghbridge.log"
        fh = RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
        fh.setLevel(logger.level)
        fh.setFormatter(_JsonFormatter())
        logger.addHandler(fh)
        logger.info("logging initialized (file=%s)", str(log_file))

    logger.propagate = False
    return logger


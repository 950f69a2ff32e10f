from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from core.config import BACKEND_DIR

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_FILE_NAME = "program-templates.log"

# Library loggers that drown out link mutations at DEBUG.
_QUIET_LOGGERS: dict[str, int] = {
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.INFO,
}


def _resolve_level(env: str, log_level: str | None) -> int:
    if log_level:
        level = logging.getLevelName(log_level.strip().upper())
        if isinstance(level, int):
            return level
    return logging.INFO if env == "production" else logging.DEBUG


def _file_handler(log_dir: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(*, environment: str, log_level: str | None = None, log_dir: str | Path | None = None) -> None:
    """Configure logging for the API process.

    Development logs everything to the console at DEBUG. Production logs at
    INFO and also writes a rotating file under ``log_dir`` (``backend/logs``
    unless configured). Calling it again once handlers exist does nothing.
    """

    root = logging.getLogger()
    if root.handlers:
        return

    env = (environment or "development").lower().strip()
    level = _resolve_level(env, log_level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if env == "production" or log_dir is not None:
        target = Path(log_dir) if log_dir is not None else Path(BACKEND_DIR) / "logs"
        handlers.append(_file_handler(target, level, formatter))

    logging.basicConfig(level=level, handlers=handlers)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, quiet_level))
    logging.getLogger("uvicorn.error").setLevel(level)

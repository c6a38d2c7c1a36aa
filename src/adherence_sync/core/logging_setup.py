"""
Logging for the integration and the API server.
Console plus a rotating file under data/logs, one file per entry point.
"""
import logging
import logging.handlers
from pathlib import Path
from adherence_sync.core.config import LOGS_DIR

LOG_FMT = "%(asctime)s - %(levelname)-5s - %(name)s - %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 2_000_000
BACKUPS = 3

# HTTP clients log every connection at DEBUG
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore")

_installed: list[logging.Handler] = []

def setup_logging(
    level: str = "INFO",
    file_name: str = "integration.log",
    logs_dir: Path = LOGS_DIR,
    force: bool = False,
) -> Path:
    """Configure the root logger once; `force` replaces handlers installed earlier. Returns the log file path."""
    log_file = Path(logs_dir) / file_name
    if _installed and not force:
        return log_file

    root = logging.getLogger()
    for handler in _installed:
        root.removeHandler(handler)
        handler.close()
    _installed.clear()

    log_file.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FMT, datefmt=DATE_FMT)
    handlers = [
        logging.StreamHandler(),
        logging.handlers.RotatingFileHandler(log_file, maxBytes=MAX_BYTES, backupCount=BACKUPS, encoding="utf-8"),
    ]
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed.append(handler)

    root.setLevel(level.upper())
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_file

"""
Module: logs.py
Project: GBIF occurrence cubes (occcube)

Description:
Logging setup shared by all pipeline steps. Each step writes a
timestamped log file under logs/<step>/ and mirrors its messages on the
console, so that every run leaves a trace for reproducibility.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# All library modules log below this name.
ROOT_LOGGER = "occcube"


# Helper: relative paths for logging
def rel(path: Path, root: Optional[Path] = None) -> str:
    """
    Return path as a string relative to the project root (the current
    working directory by default), so that absolute system paths do not
    appear in logs.
    """
    root = Path.cwd() if root is None else Path(root)
    try:
        return str(Path(path).resolve().relative_to(root.resolve()))
    except ValueError:
        return str(path)


def setup_logging(
    step: str,
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the package logger for one pipeline step.

    A log file logs/<step>/<step>_<YYYYmmdd_HHMM>.log is created when
    log_dir is given. Existing handlers are cleared to avoid duplicated
    entries when a step is run several times in one interpreter.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    # clear old handlers (avoid duplicates in interactive use)
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    if log_dir is not None:
        step_dir = Path(log_dir) / step
        step_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M")
        logfile = step_dir / f"{step}_{timestamp}.log"

        file_handler = logging.FileHandler(logfile, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    return logger

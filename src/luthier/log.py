"""
Logging setup for the command line entry point.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE_NAME = "luthier.log"


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Configure the `luthier` logger hierarchy.

    Console output goes through rich on stderr (WARNING, or DEBUG when
    verbose). When log_dir is given a rotating file receives everything
    from INFO up.

    Returns:
        Path of the log file, or None if file logging is off or unavailable
    """
    root = logging.getLogger("luthier")
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False

    console = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(console)

    if log_dir is None:
        return None

    log_file = Path(log_dir) / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=3, encoding="utf-8")
    except OSError as e:
        root.warning("file logging disabled, cannot open %s: %s", log_file, e)
        return None
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)
    return log_file

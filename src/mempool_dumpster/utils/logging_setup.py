import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# Global variables to track logging state
_is_logging_configured = False
_current_log_file: Optional[Path] = None


def setup_logging(level: str = "INFO", log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Configure logging for all modules, once per process"""
    global _is_logging_configured, _current_log_file

    if _is_logging_configured:
        return logging.getLogger()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level.upper())
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        _current_log_file = log_dir / f"mempool_dumpster_{timestamp}.log"

        file_handler = logging.FileHandler(_current_log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Set higher log level for noisy third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    _is_logging_configured = True
    return root_logger


def get_current_log_file() -> Optional[Path]:
    """Get the path to the current log file"""
    return _current_log_file

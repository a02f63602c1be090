from .logging_setup import setup_logging, get_current_log_file

__all__ = ["setup_logging", "get_current_log_file"]

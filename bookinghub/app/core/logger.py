"""Logger facade.

``get_logger`` is the helper modules use when they do not declare their own
module-level logger; ``configure_logging`` is called once by the runtime
entrypoint.
"""

import logging

from rich.logging import RichHandler

from bookinghub.app.core.constants import LOG_FILE, LOG_LEVEL_NAME

__all__ = ["get_logger", "configure_logging"]

_NOISY_LOGGERS = {
    "asyncpg": logging.WARNING,
    "alembic": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or "bookinghub")


def configure_logging(level_name: str | None = None, log_file: str | None = LOG_FILE) -> logging.Logger:
    """Install Rich console logging plus an optional WARNING+ file handler."""
    level = getattr(logging, (level_name or LOG_LEVEL_NAME).upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            rich_tracebacks=True,
            markup=False,
            show_time=True,
            show_level=True,
            show_path=False,
            log_time_format="%H:%M:%S",
        )
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    return get_logger()

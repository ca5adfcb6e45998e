import importlib
import logging

from bookinghub.app.core import constants


def _reload_constants(monkeypatch, **env) -> object:
    """Reload constants with a temporary env state."""
    for key, value in env.items():
        if value is None:
            monkeypatch.delenv(key, raising=False)
        else:
            monkeypatch.setenv(key, value)
    return importlib.reload(constants)


def test_env_helpers_parse_ints_and_bools(monkeypatch):
    module = _reload_constants(
        monkeypatch,
        HOLD_TTL_MINUTES="20",
        SLOT_STEP_MINUTES="30",
        RUN_EXPIRATION_WORKER="no",
        STORE_TIMEOUT_SECONDS="2.5",
    )
    assert module.HOLD_TTL_MINUTES == 20
    assert module.SLOT_STEP_MINUTES == 30
    assert module.RUN_EXPIRATION_WORKER is False
    assert module.STORE_TIMEOUT_SECONDS == 2.5
    _reload_constants(
        monkeypatch,
        HOLD_TTL_MINUTES=None,
        SLOT_STEP_MINUTES=None,
        RUN_EXPIRATION_WORKER=None,
        STORE_TIMEOUT_SECONDS=None,
    )


def test_env_helpers_fallbacks(monkeypatch):
    module = _reload_constants(monkeypatch, HOLD_TTL_MINUTES="oops", SLOT_STEP_MINUTES="0")
    assert module.HOLD_TTL_MINUTES == 15
    assert module.SLOT_STEP_MINUTES == 1

    module = _reload_constants(monkeypatch, HOLD_TTL_MINUTES=None, SLOT_STEP_MINUTES=None)
    assert module.HOLD_TTL_MINUTES == 15
    assert module.SLOT_STEP_MINUTES == 15


def test_reservation_storage_choice(monkeypatch):
    module = _reload_constants(monkeypatch, RESERVATION_STORAGE=" Bookings ")
    assert module.RESERVATION_STORAGE == "bookings"

    module = _reload_constants(monkeypatch, RESERVATION_STORAGE="redis")
    assert module.RESERVATION_STORAGE == "holds"

    _reload_constants(monkeypatch, RESERVATION_STORAGE=None)


def test_get_logger_returns_project_logger():
    from bookinghub.app.core.logger import get_logger

    logger = get_logger()
    assert isinstance(logger, logging.Logger)
    assert logger.name == "bookinghub"
    assert get_logger("bookinghub.test").name == "bookinghub.test"


def test_configure_logging_installs_rich_handler():
    from rich.logging import RichHandler

    from bookinghub.app.core.logger import configure_logging

    configure_logging("debug", log_file=None)
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h, RichHandler) for h in root.handlers)
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

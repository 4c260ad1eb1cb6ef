import io
import logging

import pytest

from limbflat.logging_utils import (
    PACKAGE_LOGGER,
    log_once,
    reset_log_once,
    setup_logging,
    teardown_logging,
)


@pytest.fixture(autouse=True)
def _fresh_log_once():
    reset_log_once()
    yield
    reset_log_once()


@pytest.fixture
def clean_package_logger(monkeypatch):
    monkeypatch.delenv("LIMBFLAT_LOG_LEVEL", raising=False)
    teardown_logging()
    yield logging.getLogger(PACKAGE_LOGGER)
    teardown_logging()


def test_log_once_emits_a_single_record(caplog):
    logger = logging.getLogger("limbflat.test")
    with caplog.at_level(logging.WARNING, logger="limbflat.test"):
        first = log_once(logger, "solver:max_iterations", logging.WARNING, "stopped after %d", 200)
        second = log_once(logger, "solver:max_iterations", logging.WARNING, "stopped after %d", 200)

    assert first is True
    assert second is False
    messages = [r.getMessage() for r in caplog.records if r.name == "limbflat.test"]
    assert messages == ["stopped after 200"]


def test_log_once_keys_are_independent(caplog):
    logger = logging.getLogger("limbflat.test")
    with caplog.at_level(logging.INFO, logger="limbflat.test"):
        assert log_once(logger, "a", logging.INFO, "a")
        assert log_once(logger, "b", logging.INFO, "b")
        reset_log_once()
        assert log_once(logger, "a", logging.INFO, "a again")

    assert [r.getMessage() for r in caplog.records if r.name == "limbflat.test"] == ["a", "b", "a again"]


def test_package_logger_has_a_null_handler_on_import():
    import limbflat  # noqa: F401

    handlers = logging.getLogger(PACKAGE_LOGGER).handlers
    assert any(isinstance(h, logging.NullHandler) for h in handlers)


def test_file_logging_stays_off_the_root_logger(clean_package_logger, tmp_path):
    root = logging.getLogger()
    root_handlers = list(root.handlers)
    root_level = root.level

    path = setup_logging(log_file=tmp_path / "logs" / "run.log", log_level="DEBUG")
    assert path == tmp_path / "logs" / "run.log"
    assert path.exists()

    assert root.handlers == root_handlers
    assert root.level == root_level
    assert clean_package_logger.level == logging.DEBUG

    logging.getLogger("limbflat.lscm").debug("solver detail %d", 7)
    for handler in clean_package_logger.handlers:
        handler.flush()
    text = path.read_text(encoding="utf-8")
    assert "Logging initialized" in text
    assert "[limbflat.lscm] solver detail 7" in text


def test_setup_logging_is_idempotent(clean_package_logger, tmp_path):
    path = setup_logging(log_file=tmp_path / "run.log")
    again = setup_logging(log_file=tmp_path / "other.log")

    assert again == path
    file_handlers = [h for h in clean_package_logger.handlers if isinstance(h, logging.FileHandler)]
    assert len(file_handlers) == 1
    assert not (tmp_path / "other.log").exists()


def test_stream_logging_and_env_level(clean_package_logger, monkeypatch):
    monkeypatch.setenv("LIMBFLAT_LOG_LEVEL", "warning")
    buf = io.StringIO()

    assert setup_logging(stream=buf, log_level="DEBUG") is None
    assert clean_package_logger.level == logging.WARNING

    logging.getLogger("limbflat.seams").info("hidden")
    logging.getLogger("limbflat.seams").warning("shown")
    assert "shown" in buf.getvalue()
    assert "hidden" not in buf.getvalue()


def test_teardown_removes_installed_handler(clean_package_logger, tmp_path):
    setup_logging(log_file=tmp_path / "run.log")
    teardown_logging()

    assert not any(isinstance(h, logging.FileHandler) for h in clean_package_logger.handlers)
    assert clean_package_logger.level == logging.NOTSET

import logging
import pytest
from rollout_verifier.logger import LOG_FORMAT, setup_logging


@pytest.mark.parametrize(
    "level,expected_level",
    [
        ("DEBUG", logging.DEBUG),
        ("info", logging.INFO),
        ("Warning", logging.WARNING),
        ("ERROR", logging.ERROR),
        ("critical", logging.CRITICAL),
    ],
)
def test_setup_logging_sets_root_level(level: str, expected_level: int) -> None:
    setup_logging(level)
    assert logging.getLogger().level == expected_level


@pytest.mark.parametrize("level", ["INVALID", "", "VERBOSE"])
def test_setup_logging_rejects_unknown_level(level: str) -> None:
    with pytest.raises(ValueError, match=f"Invalid log level: {level}"):
        setup_logging(level)


def test_setup_logging_replaces_existing_handlers() -> None:
    root_logger = logging.getLogger()
    stale = logging.NullHandler()
    root_logger.addHandler(stale)

    setup_logging("INFO")
    setup_logging("DEBUG")

    assert stale not in root_logger.handlers
    assert len(root_logger.handlers) == 1
    assert root_logger.level == logging.DEBUG


def test_setup_logging_format_names_the_module_logger() -> None:
    setup_logging("INFO")
    handler = logging.getLogger().handlers[0]
    assert handler.formatter is not None
    assert handler.formatter._fmt == LOG_FORMAT

    record = logging.LogRecord(
        "rollout_verifier.verifier.verifier", logging.WARNING, __file__, 1, "Sampling Set 3 has exceeded", None, None
    )
    formatted = handler.format(record)
    assert formatted.endswith(" - rollout_verifier.verifier.verifier - WARNING - Sampling Set 3 has exceeded")

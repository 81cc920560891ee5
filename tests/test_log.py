import sys

import pytest
from loguru import logger

from qualytics.log import configure_logging


@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_configure_logging_filters_by_level(capsys, restore_logger):
    configure_logging("warning")
    logger.info("pool opened")
    logger.warning("pool exhausted")

    err = capsys.readouterr().err
    assert "pool exhausted" in err
    assert "pool opened" not in err
    assert "WARNING" in err

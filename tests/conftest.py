from __future__ import annotations

from collections.abc import Iterator
import logging

import pytest


@pytest.fixture
def restore_autofix_logger_state() -> Iterator[None]:
    logger = logging.getLogger("autofix")
    original_handlers = list(logger.handlers)
    original_level = logger.level
    original_propagate = logger.propagate
    try:
        yield
    finally:
        for handler in logger.handlers:
            if handler not in original_handlers:
                handler.close()
        logger.handlers.clear()
        for handler in original_handlers:
            logger.addHandler(handler)
        logger.setLevel(original_level)
        logger.propagate = original_propagate

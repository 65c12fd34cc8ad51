"""Shared fixtures for dusklight tests."""

import logging
import time

import pytest

logging.basicConfig(
    level=logging.DEBUG, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout elapses."""

    def _wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait

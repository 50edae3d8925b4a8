"""Fixed-delay retry loop for boolean attempts."""
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def retry(attempt: Callable[[], bool], retries: int = 0, delay: float = 1.0) -> bool:
    """Call attempt() until it returns True, sleeping between failures.

    Args:
        attempt: Zero-argument callable returning True on success.
        retries: Extra attempts after the first failure (total = retries + 1).
        delay: Seconds to sleep between attempts.

    Returns:
        True on the first successful attempt, False once retries are exhausted.

    Raises:
        ValueError: retries or delay is negative.
    """
    if retries < 0:
        raise ValueError(f"retries must be >= 0, got {retries}")
    if delay < 0:
        raise ValueError(f"delay must be >= 0, got {delay}")

    failures = 0
    while not attempt():
        failures += 1
        if failures > retries:
            return False
        logger.debug("Attempt %d/%d failed, retrying in %ss", failures, retries + 1, delay)
        time.sleep(delay)
    return True

"""
Wait for the Gitea instance to answer before opening a browser.

A freshly started container can take a while before it serves pages.
This is a wait for the service to come up, not a retry of a failed
action; once it returns the workflows run exactly once.
"""

import logging
import time
from typing import Callable

from curl_cffi import requests
from curl_cffi.requests import exceptions as requests_exceptions

import provision_config
from errors import ServiceUnreachable

logger = logging.getLogger(__name__)


def wait_for_service(url: str, timeout: float, interval: float = provision_config.READY_INTERVAL,
                     session=None,
                     clock: Callable[[], float] = time.monotonic,
                     sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Poll url until it answers HTTP 200.

    Args:
        url: URL to poll (the instance home page)
        timeout: Total seconds to wait
        interval: Seconds between attempts
        session: Optional curl_cffi Session (tests pass a fake)

    Returns:
        Number of attempts it took

    Raises:
        ServiceUnreachable: If no 200 was seen before the deadline
    """
    http = session or requests.Session()
    deadline = clock() + timeout
    attempts = 0
    last_error = ""

    logger.info(f"Waiting up to {timeout:.0f}s for {url} to be ready...")
    while True:
        attempts += 1
        try:
            response = http.get(url, timeout=5)
            if response.status_code == 200:
                logger.info(f"{url} is ready after {attempts} attempt(s)")
                return attempts
            last_error = f"HTTP {response.status_code}"
        except requests_exceptions.RequestException as e:
            last_error = str(e)
            logger.debug(f"Readiness probe failed: {e}")

        if clock() + interval > deadline:
            raise ServiceUnreachable(url, f"not ready after {timeout:.0f}s: {last_error}")
        sleep(interval)

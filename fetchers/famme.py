# fetchers/famme.py
import os

import requests
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.errors import TransportError
from core.logger import get_logger

logger = get_logger(__name__)

FEED_URL = os.getenv("FEED_URL", "https://famme.no/products.json").strip()
FEED_TIMEOUT = float(os.getenv("FEED_TIMEOUT", "30"))
FEED_MAX_ATTEMPTS = max(1, int(os.getenv("FEED_MAX_ATTEMPTS", "3")))
USER_AGENT = os.getenv(
    "FEED_USER_AGENT",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)

SESSION = requests.Session()
SESSION.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})


@retry(
    retry=retry_if_exception_type(requests.RequestException),
    wait=wait_exponential_jitter(initial=1, max=30),
    stop=stop_after_attempt(FEED_MAX_ATTEMPTS),
)
def _fetch(url: str, timeout: float) -> str:
    r = SESSION.get(url, timeout=timeout)
    r.raise_for_status()
    return r.text


def fetch_feed(url: str = FEED_URL, timeout: float = FEED_TIMEOUT) -> str:
    """
    Fetch the raw products.json body. The timeout bounds each HTTP request;
    failures after retries are raised as TransportError.
    """
    logger.info("Fetching product feed from %s", url)
    try:
        body = _fetch(url, timeout)
    except RetryError as e:
        cause = e.last_attempt.exception() if e.last_attempt else e
        logger.error("Feed fetch failed for %s after retries: %s", url, cause)
        raise TransportError(f"feed unreachable at {url}: {cause}") from e
    except requests.RequestException as e:
        logger.error("Feed fetch failed for %s: %s", url, e)
        raise TransportError(f"feed unreachable at {url}: {e}") from e

    if not body:
        logger.error("Received empty response from %s", url)
        raise TransportError(f"empty response from {url}")

    logger.debug("Fetched %d bytes from %s", len(body), url)
    return body

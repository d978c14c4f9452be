"""
Keep a hosted instance awake by pinging its health endpoint.

Free hosting tiers put idle instances to sleep; a periodic request to
``/health`` keeps the board reachable for pilots.

Usage:
    python scripts/keep_alive.py [base_url]

The base URL defaults to KEEP_ALIVE_URL. Without one the script only runs
when ENVIRONMENT=production, pinging http://127.0.0.1:$PORT.
"""
import os
import sys
import time

import httpx

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mercboard.config import settings
from mercboard.logging import setup_logging, structlog


INITIAL_DELAY_SECONDS = 30
REQUEST_TIMEOUT_SECONDS = 5.0

logger = structlog.get_logger("mercboard.keep_alive")


def resolve_base_url(argv) -> str:
    if len(argv) > 1:
        return argv[1]
    if settings.keep_alive_url:
        return settings.keep_alive_url
    if settings.environment == "production":
        return f"http://127.0.0.1:{settings.port}"
    return ""


def ping(client: httpx.Client, url: str) -> bool:
    try:
        response = client.get(url)
    except httpx.HTTPError as e:
        logger.warning("keep_alive_failed", url=url, error=str(e))
        return False
    if response.status_code != 200:
        logger.warning("keep_alive_unhealthy", url=url, status=response.status_code)
        return False
    logger.info("keep_alive_ok", url=url)
    return True


def main() -> int:
    setup_logging()
    base_url = resolve_base_url(sys.argv)
    if not base_url:
        logger.info("keep_alive_disabled", environment=settings.environment)
        return 0

    url = base_url.rstrip("/") + "/health"
    logger.info("keep_alive_started", url=url, interval=settings.keep_alive_interval_seconds)
    time.sleep(INITIAL_DELAY_SECONDS)
    with httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS) as client:
        while True:
            ping(client, url)
            time.sleep(settings.keep_alive_interval_seconds)


if __name__ == "__main__":
    sys.exit(main())

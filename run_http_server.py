#!/usr/bin/env python
"""Entry point for running the HTTP server."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables before the config is built
load_dotenv()

from eventai.models.config import get_config  # noqa: E402

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

for noisy in ("botocore", "boto3", "httpx", "asyncpg", "pypdf"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def main():
    """Run the HTTP server."""
    config = get_config()

    if not config.serp_api_key:
        logger.warning("SERP_API_KEY is not set, nearby event search will be skipped")
    if not config.jwt_secret:
        logger.info("JWT_SECRET is not set, bearer token identity is disabled")

    logger.info(f"Starting Event AI server on {config.http_host}:{config.http_port}")

    uvicorn.run(
        "eventai.http_server:app",
        host=config.http_host,
        port=config.http_port,
        reload=os.getenv("DEBUG", "false").lower() == "true",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()

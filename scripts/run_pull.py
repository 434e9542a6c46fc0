"""
Run one catalog pull.

Usage:
    python scripts/run_pull.py '<connection info JSON>' <output.csv>

Pull statistics are printed to stdout as JSON. On failure an error envelope
``{"error_code": ..., "error_message": ...}`` is printed to stderr and the
process exits with status 1.
"""

import asyncio
import json
import os
import sys
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import create_staging_engine
from core.exceptions import ValidationError, build_error_envelope
from core.logging import setup_logging
from ingestion.extractors.shopify_client import ShopifyClient
from ingestion.runner import execute_pull
from schemas.settings import PullSettings

logger = logging.getLogger(__name__)


def parse_arguments(argv):
    if len(argv) != 3:
        raise ValidationError("Usage: run_pull.py '<connection info JSON>' <output.csv>")
    try:
        options = json.loads(argv[1])
    except ValueError as e:
        raise ValidationError("Connection info is not valid JSON", original_exception=e)
    return options, argv[2]


async def run_pull(argv) -> dict:
    options, output_path = parse_arguments(argv)
    pull_settings = PullSettings.from_client_options(options)

    engine = create_staging_engine()
    try:
        async with ShopifyClient(
            pull_settings.shop_name,
            pull_settings.oauth_token,
            api_version=settings.SHOPIFY_API_VERSION,
        ) as client:
            return await execute_pull(pull_settings, client, engine, output_path)
    finally:
        await engine.dispose()


def main() -> int:
    # stdout carries the result, so logs go to stderr
    setup_logging(stream=sys.stderr)
    try:
        result = asyncio.run(run_pull(sys.argv))
    except Exception as e:
        sys.stderr.write(json.dumps(build_error_envelope(e)) + "\n")
        return 1

    sys.stdout.write(json.dumps(result) + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Banking Ledger Entry Point

Starts the FastAPI server with the ledger configured from BANK_LEDGER_*
environment variables (or a .env file).
"""

import sys

import uvicorn

from bank_ledger.api import create_app
from bank_ledger.config import get_config
from bank_ledger.logging_config import setup_logging


def main():
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format)
    logger.info(
        f"Starting banking ledger API on http://{config.api_host}:{config.api_port} "
        f"(store: {config.store_backend})"
    )

    try:
        uvicorn.run(
            create_app(),
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Shutting down banking ledger")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

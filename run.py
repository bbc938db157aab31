#!/usr/bin/env python3
"""
Jewel Ledger Entry Point

Starts the FastAPI server with settings from the environment (JEWEL_LEDGER_*).
"""

import sys

from jewel_ledger.api import run_server
from jewel_ledger.config import get_config
from jewel_ledger.logging_config import get_logger, setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, "jewel_ledger", config.log_format, config.log_file)
    logger = get_logger("jewel_ledger.run")

    logger.info(f"Starting Jewel Ledger on {config.api_host}:{config.api_port} "
                f"({config.storage_backend} storage)")

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False,
            log_level=config.log_level,
            workers=config.api_workers
        )
    except KeyboardInterrupt:
        logger.info("Shutting down Jewel Ledger")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)

#!/usr/bin/env python3
"""
Loan Engine Entry Point

Starts the FastAPI server exposing schedule previews and repayment allocation.
"""

import sys

from loan_engine.api import run_server
from loan_engine.config import get_config
from loan_engine.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)
    logger.info("Starting Loan Engine API on %s:%d", config.api_host, config.api_port)

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        logger.info("Shutting down Loan Engine API")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)

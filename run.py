#!/usr/bin/env python3
"""
Payroll Loan Engine Entry Point

Starts the FastAPI server with the payroll loan API.
"""

import sys

import uvicorn

from payroll_core.api import create_app
from payroll_core.config import get_config
from payroll_core.logging_config import configure_logging


if __name__ == "__main__":
    config = get_config()
    logger = configure_logging(config)
    logger.info("Starting payroll loan API on %s:%s", config.api_host, config.api_port)

    try:
        uvicorn.run(create_app(), host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down payroll loan API")
    except Exception as e:
        logger.exception("Error starting server: %s", e)
        sys.exit(1)

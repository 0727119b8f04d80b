#!/usr/bin/env python3
"""
Debt Ledger Entry Point

Starts the FastAPI server with the host, port and storage taken from the
DEBT_LEDGER_* environment.
"""

import sys

from debt_ledger.api import run_server
from debt_ledger.config import get_config
from debt_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting Debt Ledger...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Debt Ledger...")
    except Exception as e:
        logger.error("Error starting server: %s", e)
        sys.exit(1)

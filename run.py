#!/usr/bin/env python3
"""
Token Ledger Entry Point

Starts the FastAPI host for the token ledger. Settings come from
TOKEN_LEDGER_* environment variables (see token_ledger/config.py).
"""

import sys

from token_ledger.api import run_server
from token_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Token Ledger...")
    print(f"Storage: {config.storage_backend} ({config.database_path})")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Token Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

#!/usr/bin/env python3
"""
Wallet Ledger Entry Point

Starts the FastAPI server with the wallet ledger. Host, port, database and
rate source come from WALLET_* environment variables or .env.
"""

import sys

from wallet_ledger.api import run_server
from wallet_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Wallet Ledger...")
    print(f"Database: {config.database_url}")
    print(f"Base currency: {config.base_currency}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Wallet Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

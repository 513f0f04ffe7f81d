#!/usr/bin/env python3
"""
Peer Lending Core Entry Point

Starts the FastAPI server with the lending engine and funding ledger.
"""

import sys

from peer_lending.api import run_server
from peer_lending.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Peer Lending Core...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Peer Lending Core...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)

"""Run the dice table web server."""

import sys

from src.config import get_config
from src.main import main

if __name__ == "__main__":
    config = get_config()

    print("=" * 50)
    print("  Dice Table - Web Server")
    print("=" * 50)
    print()
    print(f"Starting server at http://localhost:{config.server.port}")
    print("Players join at ws://<your-ip>:" f"{config.server.port}/ws/<room-name>")
    print()
    print("Press Ctrl+C to stop")
    print()

    sys.exit(main())

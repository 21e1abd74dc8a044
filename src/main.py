"""Main entry point for the dice table server."""

import sys

from .config import get_config


def setup_paths() -> None:
    """Ensure required directories exist."""
    config = get_config()

    config.paths.saves.mkdir(parents=True, exist_ok=True)
    config.paths.database.parent.mkdir(parents=True, exist_ok=True)


def main() -> int:
    """Main entry point for the application.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    try:
        config = get_config()
        setup_paths()

        import uvicorn

        uvicorn.run(
            "src.web.server:app",
            host=config.server.host,
            port=config.server.port,
            reload=config.server.reload,
            log_level=config.logging.level.lower(),
        )
        return 0

    except KeyboardInterrupt:
        print("\nTable closed.")
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

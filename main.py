#!/usr/bin/env python3
"""Main entry point for the bracket voting engine."""

import logging
import sys

from config.settings import AppConfig, get_default_config


def setup_logging(config: AppConfig):
    """Configure logging for the web server."""
    logging.basicConfig(
        level=getattr(logging, config.system.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def print_usage():
    """Print usage information for local development."""
    print("Bracket Engine")
    print("=" * 40)
    print("Usage:")
    print("   python main.py --web   start the HTTP API")
    print()
    print("Configuration is read from bracket_config.json")
    print("(override the path with BRACKET_CONFIG).")
    print()


def start_web_server():
    """Start the FastAPI web server."""
    config = get_default_config()
    setup_logging(config)

    import uvicorn

    from web.api import app

    host, port = config.system.host, config.system.port
    print(f"Starting Bracket Engine on {host}:{port}")
    print(f"API Documentation: http://localhost:{port}/docs")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=config.system.log_level.lower(),
        access_log=True,
    )


def main():
    """Main entry point."""
    if "--help" in sys.argv or "-h" in sys.argv:
        print_usage()
    elif "--web" in sys.argv:
        start_web_server()
    else:
        print_usage()
        print("Tip: Use 'python main.py --web' to start the server")


if __name__ == "__main__":
    main()

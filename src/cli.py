#!/usr/bin/env python3
"""Command Line Interface for the River UI server.

Usage:
    riverui                    # Serve the UI and API under "/"
    riverui -prefix /riverui   # Serve under a path prefix
"""
from __future__ import annotations

import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from bootstrap import init_and_serve
from core.config import DEFAULT_PATH_PREFIX
from core.logging_config import get_logger, is_debug_enabled, setup_logging

ENV_FILE = ".env"

app = typer.Typer(help="River UI server", add_completion=False)


def load_env_file(path: str = ENV_FILE) -> bool:
    """
    Load a local .env file into the process environment.

    Variables already set in the environment take precedence.

    Returns:
        True if the file was found and loaded.
    """
    env_path = Path(path)
    if not env_path.is_file():
        return False
    load_dotenv(env_path, override=False)
    return True


@app.command()
def serve(
    prefix: str = typer.Option(
        DEFAULT_PATH_PREFIX,
        "-prefix",
        "--prefix",
        help="path prefix to use for the API and UI HTTP requests",
    ),
) -> None:
    """Start the River UI server."""
    env_loaded = load_env_file()

    setup_logging(
        debug=is_debug_enabled(),
        json_format=os.environ.get("LOG_FORMAT", "").lower() == "json",
    )
    logger = get_logger("riverui")
    if not env_loaded:
        logger.info("No .env file detected, using environment variables")

    raise typer.Exit(init_and_serve(prefix, logger=logger))


def main() -> None:
    app()


if __name__ == "__main__":
    main()

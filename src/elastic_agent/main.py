"""
Elastic AI Agent entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(HTTP API or interactive shell).
"""

import argparse
import logging
import sys

from elastic_agent.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stderr,
    )
    # Per-request logs from the HTTP clients drown out the agent's own
    for name in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the agent.

    Sets up logging and starts either the HTTP API or the interactive shell.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Ask questions about your Elasticsearch data")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="cli",
        help="Serve the REST API or run the interactive shell (default: cli)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting Elastic AI Agent [%s mode, provider=%s]", args.mode, settings.PROVIDER)
    secrets = {"OPENAI_API_KEY", "ANTHROPIC_API_KEY", "ELASTICSEARCH_PASSWORD"}
    logger.debug("Settings: %s", settings.model_dump(exclude=secrets))

    # Lazy imports to avoid server dependencies if not needed
    if args.mode == "api":
        from elastic_agent.api.app import run_api  # pylint: disable=import-outside-toplevel

        run_api(port=settings.API_PORT, reload=settings.DEBUG)
    else:
        from elastic_agent.agent.agent_loop import (  # pylint: disable=import-outside-toplevel
            run_cli,
        )

        run_cli()


if __name__ == "__main__":
    main()

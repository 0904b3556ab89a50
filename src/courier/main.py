"""
Courier entry point.

This file handles startup concerns (arg-parsing, logging) and launches the appropriate interface
(API server, or API server plus interactive CLI).
"""

import argparse
import logging
import sys

from courier.api.app import run_api
from courier.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Third-party clients are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("chromadb").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Command-line options."""
    parser = argparse.ArgumentParser(description="Run the Courier command engine")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API, or the API plus an interactive CLI (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument("--user-id", default="", help="CLI: id of the user issuing commands")
    parser.add_argument(
        "--screen",
        choices=["chats", "conversation", "profile", "settings"],
        default="chats",
        help="CLI: screen the user starts on (default: %(default)s)",
    )
    parser.add_argument(
        "--conversation-id", default=None, help="CLI: open conversation when --screen=conversation"
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the Courier application.

    This function sets up the command-line interface, initializes logging, and starts the
    application in either API or CLI mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.mode == "cli" and not args.user_id:
        parser.error("--user-id is required in cli mode")
    if args.screen == "conversation" and not args.conversation_id:
        parser.error("--conversation-id is required with --screen=conversation")

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting Courier [%s mode, planner=%s]", args.mode, settings.PLANNER)
    secrets = {"OPENAI_API_KEY", "ANTHROPIC_API_KEY"}
    logger.debug("Settings: %s", settings.model_dump(exclude=secrets))

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    # Lazy import to avoid threading the API when not needed
    import threading  # pylint: disable=import-outside-toplevel

    from courier.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "0.0.0.0",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work well with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Run CLI in main thread
    run_cli(user_id=args.user_id, screen=args.screen, conversation_id=args.conversation_id)


if __name__ == "__main__":
    main()

"""Command-line interface (CLI) entrypoint.

Objective:
    Provide a human-friendly CLI wrapper around
    :class:`kindle_sender.orchestrator.SendOrchestrator` and the token
    lifecycle helpers.

Responsibilities:
    - Parse arguments (command, dry-run, verbosity).
    - Configure logging (including suppressing the callback server's
      per-request access logs).
    - Invoke the selected command and print a readable report.
    - Translate application errors into actionable messages and exit codes.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_AccessLogToDebugFilter`
        - ``send`` (default): :meth:`SendOrchestrator.run` + :func:`print_results`
        - ``login``: :meth:`OAuthFlowController.get_valid_token`
        - ``logout``: :meth:`TokenStore.clear`
        - ``show-config``: :meth:`Settings.masked_dump`
        - :func:`describe_error` on failure

Operational notes:
    - This module supports being run both as a package module
      (``python -m kindle_sender.cli``) and as a script
      (``python src/kindle_sender/cli.py``). The import fallback handles
      the script case.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

try:
    from .auth import build_flow_controller, build_token_store
    from .config import Settings, get_settings
    from .errors import (
        AuthDeniedError,
        AuthTimeoutError,
        KindleSenderError,
        ListenerError,
    )
    from .models import SendResult
    from .orchestrator import SendOrchestrator
except ImportError:  # pragma: no cover
    src_root = Path(__file__).resolve().parents[1]
    if str(src_root) not in sys.path:
        sys.path.insert(0, str(src_root))

    from kindle_sender.auth import build_flow_controller, build_token_store
    from kindle_sender.config import Settings, get_settings
    from kindle_sender.errors import (
        AuthDeniedError,
        AuthTimeoutError,
        KindleSenderError,
        ListenerError,
    )
    from kindle_sender.models import SendResult
    from kindle_sender.orchestrator import SendOrchestrator


class _AccessLogToDebugFilter(logging.Filter):
    """Filter to suppress the callback server's per-request access logs.

    uvicorn logs every request on ``uvicorn.access`` at INFO level. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        if record.name == "uvicorn.access":
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    access_filter = _AccessLogToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(access_filter)


def print_results(results: list[SendResult], verbose: bool = False) -> None:
    """
    Print sending results to console.

    Args:
        results: List of SendResult objects.
        verbose: If True, print destination paths and errors.
    """
    if not results:
        print("\nNo files to send.")
        return

    print(f"\n{'='*60}")
    print(f"SEND RESULTS: {len(results)} files")
    print(f"{'='*60}\n")

    for item in results:
        status = "✅" if item.success else "❌"
        note = ""
        if item.success and item.error:
            note = f" ({item.error})"
        elif item.sent and not item.success:
            note = " (sent, but not moved)"
        print(f"  {status} {item.file_name}{note}")

        if verbose:
            if item.moved_to:
                print(f"      Moved to: {item.moved_to}")
            if item.error and not item.success:
                print(f"      Error: {item.error}")

    # Summary
    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful

    print(f"\n{'='*60}")
    print(f"SUMMARY: ✅ {successful} successful, ❌ {failed} failed")
    print(f"{'='*60}\n")


def describe_error(error: Exception) -> str:
    """Turn an application error into an actionable message.

    Args:
        error: Raised exception.

    Returns:
        str: Message for the user.
    """
    if isinstance(error, ListenerError):
        return (
            f"Port {error.port} is already in use on {error.host}. Stop the program "
            "using it or change CALLBACK_URI (and the app's registered redirect URI)."
        )
    if isinstance(error, AuthTimeoutError):
        minutes = error.timeout_seconds / 60
        window = f"{minutes:g} minutes" if error.timeout_seconds >= 60 else f"{error.timeout_seconds:g} seconds"
        return f"Local callback timed out after {window} - check your browser and try again."
    if isinstance(error, AuthDeniedError):
        return f"Authorization was denied: {error.description or error.error}"
    if isinstance(error, ValidationError):
        missing = ", ".join(str(e["loc"][0]).upper() for e in error.errors() if e.get("loc"))
        return f"Configuration error: missing or invalid settings: {missing}"
    return str(error)


def _run_send(settings: Settings, dry_run: bool, verbose: bool) -> int:
    print("\n🚀 Starting Kindle Sender...\n")
    if dry_run:
        print("⚠️  DRY RUN MODE - Files will not be sent or moved\n")

    orchestrator = SendOrchestrator(settings=settings)
    results = orchestrator.run(dry_run=dry_run)

    print_results(results, verbose=verbose)

    failed = sum(1 for r in results if not r.success)
    return 1 if failed > 0 else 0


def _run_login(settings: Settings) -> int:
    controller = build_flow_controller(settings)
    controller.get_valid_token()
    print("\n✅ Authorized. A valid access token is cached.\n")
    return 0


def _run_logout(settings: Settings) -> int:
    store = build_token_store(settings)
    if store.clear():
        print("\n✅ Token cache removed. The next run will ask for authorization.\n")
    else:
        print("\nNo token cache to remove.\n")
    return 0


def _run_show_config(settings: Settings) -> int:
    print(json.dumps(settings.masked_dump(), indent=2))
    return 0


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    This function is structured to be testable: pass an explicit ``args`` list
    instead of relying on ``sys.argv``.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parser = argparse.ArgumentParser(
        prog="kindle-sender",
        description="Kindle Sender - send e-books to your Kindle through Microsoft Graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                    Send every e-book waiting in the to-send directory
  %(prog)s send --dry-run     List the files that would be sent
  %(prog)s login              Authorize (or refresh) without sending anything
  %(prog)s logout             Delete the cached tokens
        """,
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL from settings)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="command")

    send_parser = subparsers.add_parser("send", help="Send e-books and move them to the sent directory")
    send_parser.add_argument(
        "--dry-run",
        "-d",
        action="store_true",
        help="List files without sending or moving them",
    )
    subparsers.add_parser("login", help="Make sure a valid access token is cached")
    subparsers.add_parser("logout", help="Delete the token cache")
    subparsers.add_parser("show-config", help="Print the effective configuration")

    parsed_args = parser.parse_args(args)
    command = parsed_args.command or "send"

    # Setup logging
    log_level = "DEBUG" if parsed_args.verbose else (parsed_args.log_level or "INFO")
    setup_logging(log_level)

    logger = logging.getLogger(__name__)

    try:
        settings = get_settings()
        if not parsed_args.verbose and not parsed_args.log_level:
            logging.getLogger().setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

        if command == "login":
            return _run_login(settings)
        if command == "logout":
            return _run_logout(settings)
        if command == "show-config":
            return _run_show_config(settings)
        return _run_send(
            settings,
            dry_run=getattr(parsed_args, "dry_run", False),
            verbose=parsed_args.verbose,
        )

    except (KindleSenderError, ValidationError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"\n❌ Error: {describe_error(e)}\n")
        return 1

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\n❌ Error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())

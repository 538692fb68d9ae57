"""Workflow orchestrator.

Objective:
    Coordinate the end-to-end workflow:
    1) List e-books waiting in the "to send" directory
    2) Obtain a valid Graph access token (cached, refreshed, or authorized)
    3) Send each e-book to the configured receivers
    4) Move each delivered e-book to the "sent" directory
    5) Return per-file results suitable for the CLI

Responsibilities:
    - Compose the core components (flow controller, mail client, file
      operations).
    - Isolate per-file failures: one failed send or move never stops the
      remaining files.

High-level call tree:
    - :class:`SendOrchestrator`
        - :meth:`SendOrchestrator.run`
            - :func:`kindle_sender.file_manager.list_files`
            - :meth:`OAuthFlowController.get_valid_token`
            - for each file:
                - :meth:`SendOrchestrator.process_file` OR dry-run branch
                    - :meth:`GraphMailClient.send`
                    - :func:`kindle_sender.file_manager.move_file`

Operational notes:
    - Authorization errors abort the run before any file is touched; they are
      raised to the caller.
    - The orchestrator does not persist state between runs; the directories
      themselves are the state.
"""

import logging
from pathlib import Path
from typing import Optional

from .auth import OAuthFlowController, build_flow_controller
from .config import Settings, get_settings
from .email_client import GraphMailClient
from .errors import ConfigurationError, FileOperationError, SendError
from .file_manager import list_files, move_file
from .models import SendResult

logger = logging.getLogger(__name__)


class SendOrchestrator:
    """
    Orchestrates the e-book sending workflow.

    This class is glue code: it connects the flow controller, the Graph mail
    client and the file operations without embedding protocol details.

    Attributes:
        settings: Application settings.
        auth: OAuth flow controller.
        mail_client: Graph mail client.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        auth: Optional[OAuthFlowController] = None,
        mail_client: Optional[GraphMailClient] = None,
    ) -> None:
        """
        Initialize orchestrator with all components.

        Args:
            settings: Application settings (loads from env if None).
            auth: Flow controller (built from settings if None).
            mail_client: Mail client (built from settings if None).
        """
        self.settings = settings or get_settings()
        self._auth = auth
        self.mail_client = mail_client or GraphMailClient(self.settings)

    @property
    def auth(self) -> OAuthFlowController:
        # Built lazily so dry runs work without a client secret.
        if self._auth is None:
            self._auth = build_flow_controller(self.settings)
        return self._auth

    def process_file(self, path: Path, access_token: str) -> SendResult:
        """
        Send a single file and move it to the sent directory.

        Errors are caught and returned inside :class:`SendResult` so that a
        batch run can continue with other files.

        Args:
            path: E-book file.
            access_token: Valid Graph access token.

        Returns:
            SendResult: Result of processing.
        """
        try:
            self.mail_client.send(access_token, self.settings.receiver_list, [path])
        except SendError as e:
            logger.warning(f"Failed to send file {path.name}: {e}")
            return SendResult(file_name=path.name, path=str(path), success=False, error=str(e))

        logger.info(f"Successfully sent file: {path.name}")

        try:
            destination = move_file(path, self.settings.ebook_sent_directory)
        except FileOperationError as e:
            logger.warning(f"Failed to move file {path.name}: {e}")
            return SendResult(
                file_name=path.name,
                path=str(path),
                sent=True,
                success=False,
                error=str(e),
            )

        logger.info(f"Moved file to sent directory: {path.name}")
        return SendResult(
            file_name=path.name,
            path=str(path),
            sent=True,
            moved_to=str(destination),
            success=True,
        )

    def run(self, dry_run: bool = False) -> list[SendResult]:
        """Run the sending workflow.

        Dry-run mode:
            When ``dry_run=True`` the orchestrator only lists the files it
            would send. It does not authenticate, send, or move anything.

        Args:
            dry_run: If True, list files without sending them.

        Returns:
            list[SendResult]: Results for all processed files.

        Raises:
            ConfigurationError: If either e-book directory is not configured.
            FileOperationError: If the "to send" directory cannot be read.
            AuthError: If no access token can be obtained.
            ListenerError: If the callback port is in use.
        """
        missing = [
            name.upper()
            for name in ("ebook_to_send_directory", "ebook_sent_directory")
            if getattr(self.settings, name) is None
        ]
        if missing:
            raise ConfigurationError(
                f"Configuration error: sending requires {', '.join(missing)}"
            )

        logger.info("Starting file sending process...")

        files = list_files(self.settings.ebook_to_send_directory)
        if not files:
            logger.info("No files found in directory to send.")
            return []

        logger.info(f"Found {len(files)} files to send")

        if dry_run:
            return [
                SendResult(
                    file_name=path.name,
                    path=str(path),
                    success=True,
                    error="DRY RUN - not sent",
                )
                for path in files
            ]

        access_token = self.auth.get_valid_token()

        results = []
        for i, path in enumerate(files, 1):
            logger.info(f"Sending file {i}/{len(files)}: {path.name}")
            results.append(self.process_file(path, access_token))

        # Summary
        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful

        logger.info(f"Sending process completed. Successfully sent: {successful}, Failed: {failed}")

        return results

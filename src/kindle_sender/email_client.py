"""Microsoft Graph API client for sending e-books.

Objective:
    Provide a thin wrapper around the Graph ``sendMail`` endpoint. This module
    centralizes HTTP request construction, authentication headers, and the
    Pydantic models used for the request body.

Responsibilities:
    - Read and base64-encode e-book files as inline file attachments.
    - Build a :class:`~kindle_sender.models.SendMailRequest` addressed to all
      configured receivers.
    - Issue the authenticated request (via :class:`requests`).

High-level call tree:
    - Public API:
        - :meth:`GraphMailClient.send`
    - Internal helpers:
        - :meth:`GraphMailClient.build_message`
        - :func:`build_attachment`
        - :meth:`GraphMailClient._make_request` (auth + error handling)

Graph endpoints used:
    - ``POST /me/sendMail``

Error handling:
    - Unreadable files, transport errors and non-2xx responses are logged and
      raised as :class:`~kindle_sender.errors.SendError`.
"""

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import requests

from .config import Settings
from .errors import SendError
from .models import (
    EmailAddress,
    FileAttachment,
    ItemBody,
    Message,
    Recipient,
    SendMailRequest,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Kindle personal documents use these types; mimetypes does not know most of them.
EBOOK_CONTENT_TYPES = {
    ".epub": "application/epub+zip",
    ".mobi": "application/x-mobipocket-ebook",
    ".azw": "application/vnd.amazon.ebook",
    ".azw3": "application/vnd.amazon.ebook",
    ".pdf": "application/pdf",
}

# sendMail only accepts inline attachments up to this size.
MAX_INLINE_ATTACHMENT_BYTES = 3 * 1024 * 1024


def guess_content_type(path: Path) -> str:
    """Guess the MIME type of an e-book file.

    Args:
        path: File path.

    Returns:
        str: MIME type, ``application/octet-stream`` when unknown.
    """
    suffix = path.suffix.lower()
    if suffix in EBOOK_CONTENT_TYPES:
        return EBOOK_CONTENT_TYPES[suffix]
    content_type, _encoding = mimetypes.guess_type(path.name)
    return content_type or "application/octet-stream"


def build_attachment(path: PathLike) -> FileAttachment:
    """Read a file into a Graph file attachment.

    Args:
        path: File to attach.

    Returns:
        FileAttachment: Attachment with base64 content.

    Raises:
        SendError: If the file cannot be read or exceeds
            :data:`MAX_INLINE_ATTACHMENT_BYTES`.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise SendError(f"Failed to read file {path}: {e}") from e

    if len(data) > MAX_INLINE_ATTACHMENT_BYTES:
        raise SendError(
            f"File {path.name} is {len(data) / (1024 * 1024):.1f} MB; Graph sendMail accepts "
            f"inline attachments up to {MAX_INLINE_ATTACHMENT_BYTES // (1024 * 1024)} MB"
        )

    return FileAttachment(
        name=path.name,
        content_type=guess_content_type(path),
        content_bytes=base64.b64encode(data).decode("ascii"),
    )


class GraphMailClient:
    """
    Client sending messages with attachments through Microsoft Graph.

    This class is state-light: the access token is passed per call so the
    orchestrator decides when to acquire it.

    Attributes:
        settings: Application settings.
        session: HTTP session used for requests.
    """

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        """
        Initialize the mail client.

        Args:
            settings: Application settings.
            session: Optional HTTP session (a new one is created if None).
        """
        self.settings = settings
        self.session = session or requests.Session()

    def _make_request(self, method: str, endpoint: str, access_token: str, json_data: dict) -> None:
        """Make an authenticated request to Microsoft Graph.

        Args:
            method: HTTP method.
            endpoint: API endpoint path.
            access_token: Bearer token.
            json_data: JSON body data.

        Raises:
            SendError: If the request fails or returns non-2xx.
        """
        url = f"{self.GRAPH_BASE_URL}{endpoint}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                json=json_data,
                timeout=60,
            )
        except requests.RequestException as e:
            logger.error(f"Graph API request failed: {e}")
            raise SendError(f"Failed to send email: {e}") from e

        if not response.ok:
            logger.error(f"Graph API error: {response.status_code} - {response.text}")
            raise SendError(f"Failed to send email: {response.status_code} {response.text}")

    def build_message(
        self, recipients: Sequence[str], attachment_paths: Iterable[PathLike]
    ) -> SendMailRequest:
        """Build the ``sendMail`` request body.

        Args:
            recipients: Recipient addresses.
            attachment_paths: Files to attach.

        Returns:
            SendMailRequest: Request body model.
        """
        message = Message(
            subject=self.settings.mail_subject,
            body=ItemBody(content_type="Text", content=""),
            to_recipients=[
                Recipient(email_address=EmailAddress(address=address)) for address in recipients
            ],
            attachments=[build_attachment(path) for path in attachment_paths],
        )
        return SendMailRequest(
            message=message,
            save_to_sent_items=self.settings.save_to_sent_items,
        )

    def send(
        self,
        access_token: str,
        recipients: Sequence[str],
        attachment_paths: Iterable[PathLike],
    ) -> None:
        """Send one message carrying the given attachments.

        Attachments travel inline in the ``sendMail`` body, so each file must
        fit in :data:`MAX_INLINE_ATTACHMENT_BYTES` (3 MB). Larger e-books are
        rejected with :class:`SendError` before any request is made.

        Args:
            access_token: Valid Graph access token.
            recipients: Recipient addresses.
            attachment_paths: Files to attach.

        Raises:
            SendError: If there are no recipients, a file cannot be read or is
                too large, or Graph rejects the request.
        """
        if not recipients:
            raise SendError("No recipients configured")

        payload = self.build_message(recipients, attachment_paths)
        names = [attachment.name for attachment in payload.message.attachments]
        logger.debug("Sending %s to %d recipient(s)", ", ".join(names), len(recipients))

        self._make_request(
            "POST",
            "/me/sendMail",
            access_token,
            json_data=payload.model_dump(by_alias=True, exclude_none=True),
        )
        logger.info("Email with attachment sent successfully")

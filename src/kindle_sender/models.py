"""Data models used across the application.

Objective:
    Centralize the strongly-typed structures exchanged between components:
    - OAuth token data (cached record, raw token endpoint response)
    - The transient authorization redirect result
    - Client credentials borrowed from configuration
    - Microsoft Graph ``sendMail`` payload primitives
    - Per-file results produced by the orchestrator

Design notes:
    - Graph payload models use Pydantic aliases matching Graph field names
      (e.g. ``toRecipients`` -> :attr:`Message.to_recipients`) and are
      serialized with ``by_alias=True``.
    - ``model_config = ConfigDict(populate_by_name=True)`` allows constructing
      models with either alias names or pythonic field names.
    - Values that never cross a serialization boundary (the authorization
      result, client credentials) are frozen dataclasses.

High-level structure:
    - Token primitives:
        - :class:`TokenRecord`
        - :class:`TokenResponse`
        - :class:`AuthorizationResult`
        - :class:`ClientCredentials`
    - Graph mail primitives:
        - :class:`EmailAddress`
        - :class:`Recipient`
        - :class:`ItemBody`
        - :class:`FileAttachment`
        - :class:`Message`
        - :class:`SendMailRequest`
    - Results:
        - :class:`SendResult`
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TokenRecord(BaseModel):
    """
    Token record persisted in the token cache.

    Created on the first successful authorization and overwritten on every
    refresh. ``expires_at`` is an absolute UTC timestamp so the record stays
    meaningful across process restarts; a past value means "refresh", not
    "invalid".

    Attributes:
        access_token: Bearer token for Graph calls.
        refresh_token: Long-lived token used to obtain new access tokens.
        expires_at: Absolute expiry time of the access token (UTC).
    """

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are written by nothing we know of; read them as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def is_fresh(self, now: datetime, margin: timedelta) -> bool:
        """Return True when the access token outlives ``now + margin``.

        Args:
            now: Current wall-clock time (timezone-aware).
            margin: Safety margin before expiry.

        Returns:
            bool: Whether the cached access token can be used as is.
        """
        return self.expires_at > now + margin


class TokenResponse(BaseModel):
    """Successful response from the token endpoint.

    Only the fields the application uses are declared; anything else the
    provider returns (``id_token_claims``, ``ext_expires_in`` ...) is ignored.
    """

    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_in: int = Field(ge=0)
    token_type: str = "Bearer"
    scope: str = ""

    model_config = ConfigDict(extra="ignore")

    def to_record(
        self,
        received_at: datetime,
        previous_refresh_token: Optional[str] = None,
    ) -> TokenRecord:
        """Convert the response into a cacheable record.

        Args:
            received_at: Moment the response was received.
            previous_refresh_token: Refresh token to keep when the provider
                does not rotate it.

        Returns:
            TokenRecord: Record with ``expires_at = received_at + expires_in``.

        Raises:
            ValueError: If no refresh token is available at all.
        """
        refresh_token = self.refresh_token or previous_refresh_token
        if not refresh_token:
            raise ValueError(
                "Token response has no refresh_token; was offline_access granted?"
            )
        return TokenRecord(
            access_token=self.access_token,
            refresh_token=refresh_token,
            expires_at=received_at + timedelta(seconds=self.expires_in),
        )


@dataclass(frozen=True)
class AuthorizationResult:
    """Query parameters captured from the authorization redirect.

    Args:
        code: Authorization code (present on success).
        state: Anti-forgery state echoed by the provider.
        error: OAuth error code (present on failure).
        error_description: Human-readable error description.
    """

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return bool(self.error)


@dataclass(frozen=True)
class ClientCredentials:
    """Azure AD application credentials.

    Args:
        client_id: Application (client) ID.
        client_secret: Client secret for confidential-client authentication.
        tenant_id: Tenant ID, or ``common`` / ``consumers``.
        callback_uri: Redirect URI registered for the application.
    """

    client_id: str
    client_secret: str
    tenant_id: str
    callback_uri: str

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"


class EmailAddress(BaseModel):
    """Email address with optional display name.

    This corresponds to the nested Graph structure:
    ``{"name": "...", "address": "..."}``.
    """

    address: str
    name: Optional[str] = None


class Recipient(BaseModel):
    """Recipient wrapper.

    Microsoft Graph wraps addresses under an ``emailAddress`` object.
    """

    email_address: EmailAddress = Field(alias="emailAddress")

    model_config = ConfigDict(populate_by_name=True)


class ItemBody(BaseModel):
    """Message body."""

    content_type: str = Field(default="Text", alias="contentType")
    content: str = ""

    model_config = ConfigDict(populate_by_name=True)


class FileAttachment(BaseModel):
    """Inline file attachment.

    Attributes:
        odata_type: Graph type discriminator.
        name: File name shown to the recipient.
        content_type: MIME type of the file.
        content_bytes: Base64-encoded file content.
    """

    odata_type: str = Field(default="#microsoft.graph.fileAttachment", alias="@odata.type")
    name: str
    content_type: str = Field(default="application/octet-stream", alias="contentType")
    content_bytes: str = Field(alias="contentBytes")

    model_config = ConfigDict(populate_by_name=True)


class Message(BaseModel):
    """Outgoing message."""

    subject: str
    body: ItemBody = Field(default_factory=ItemBody)
    to_recipients: list[Recipient] = Field(default_factory=list, alias="toRecipients")
    attachments: list[FileAttachment] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class SendMailRequest(BaseModel):
    """Body of ``POST /me/sendMail``."""

    message: Message
    save_to_sent_items: bool = Field(default=True, alias="saveToSentItems")

    model_config = ConfigDict(populate_by_name=True)


class SendResult(BaseModel):
    """
    Result of processing a single e-book file.

    This is the primary output type returned to the CLI. It captures both
    whether the file was sent and whether it was moved afterwards.

    Attributes:
        file_name: Name of the e-book file.
        path: Path of the file before processing.
        sent: Whether the Graph call succeeded.
        moved_to: Destination path after a successful move.
        success: Whether the file was sent and moved.
        error: Error message if failed.
    """

    file_name: str
    path: str
    sent: bool = False
    moved_to: Optional[str] = None
    success: bool = True
    error: Optional[str] = None

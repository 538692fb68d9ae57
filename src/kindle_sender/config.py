"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Azure AD credentials, OAuth callback, e-book directories,
    recipients, token cache and timing knobs).

Responsibilities:
    - Load settings via :class:`Settings` (Pydantic BaseSettings) from the
      environment, a ``.env`` file, or a ``config.json`` file.
    - Expose derived values: the recipient list and the immutable
      :class:`~kindle_sender.models.ClientCredentials`.

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :attr:`Settings.receiver_list`
        - :attr:`Settings.client_credentials`
        - :meth:`Settings.masked_dump`

Operational notes:
    - Source priority: init kwargs > environment > ``.env`` > ``config.json``.
    - ``config.json`` uses the same flat keys as the environment
      (``azure_client_id``, ``receivers`` ...). ``receivers`` may be a JSON
      list there and a comma-separated string everywhere else.
    - Most modules accept a ``Settings`` object explicitly to enable testing.
"""

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .errors import ConfigurationError
from .models import ClientCredentials

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_CACHE_PATH = Path.home() / ".kindle_sender" / "auth.json"


class Settings(BaseSettings):
    """
    Application settings.

    The settings model is intentionally flat and human-editable via ``.env``
    or ``config.json``. Most fields map directly to environment variables.

    Attributes:
        azure_client_id: Azure AD application client ID.
        azure_client_secret: Azure AD application client secret.
        azure_tenant_id: Azure AD tenant ID.
        callback_uri: OAuth redirect URI served by the local listener.
        ebook_to_send_directory: Directory scanned for e-books to send.
        ebook_sent_directory: Directory e-books are moved to once sent.
        receivers: Comma-separated recipient (Kindle) addresses.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        json_file="config.json",
        json_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Azure AD Configuration
    azure_client_id: str = Field(..., description="Azure AD application client ID")
    azure_client_secret: Optional[str] = Field(
        default=None, description="Azure AD application client secret"
    )
    azure_tenant_id: str = Field(
        default="common", description="Azure AD tenant ID (common for multi-tenant apps)"
    )
    callback_uri: str = Field(
        default="http://localhost:8080/callback",
        description="Redirect URI registered for the app; the local listener binds its host and port",
    )

    # E-book directories and recipients
    ebook_to_send_directory: Optional[Path] = Field(
        default=None, description="Directory of e-books to send (required by send)"
    )
    ebook_sent_directory: Optional[Path] = Field(
        default=None, description="Directory for e-books already sent (required by send)"
    )
    receivers: str = Field(default="", description="Comma-separated list of recipient addresses")

    # Token cache persistence
    token_cache_path: Path = Field(
        default=DEFAULT_TOKEN_CACHE_PATH, description="Token cache file location"
    )
    token_cache_backend: str = Field(
        default="file",
        description=(
            "Token cache backend. 'file' stores the cache on the local filesystem. "
            "'azure_blob' stores the cache JSON in Azure Blob Storage."
        ),
    )
    token_cache_blob_account_url: Optional[str] = Field(
        default=None,
        description="Azure Storage account URL, e.g. https://<account>.blob.core.windows.net",
    )
    token_cache_blob_container: Optional[str] = Field(
        default=None, description="Azure Blob container name for the token cache"
    )
    token_cache_blob_name: str = Field(
        default="kindle_sender_token.json", description="Azure Blob name for the token cache"
    )

    # Authorization flow timing
    token_expiry_margin_seconds: int = Field(
        default=60, ge=0, description="Refresh tokens expiring within this many seconds"
    )
    callback_timeout_seconds: float = Field(
        default=300, gt=0, description="How long to wait for the browser callback"
    )
    open_browser: bool = Field(
        default=True, description="Open the authorization URL in the default browser"
    )

    # Mail settings
    mail_subject: str = Field(default="Your Kindle File", description="Subject of sent emails")
    save_to_sent_items: bool = Field(
        default=True, description="Keep a copy of each sent email in Sent Items"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Add ``config.json`` as the lowest-priority settings source."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("receivers", mode="before")
    @classmethod
    def join_receivers(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return ",".join(str(item) for item in value)
        return value

    @property
    def receiver_list(self) -> list[str]:
        """
        Parse recipient addresses from the comma-separated string.

        Returns:
            list[str]: Trimmed addresses, empty entries removed.
        """
        if not self.receivers:
            return []
        return [email.strip() for email in self.receivers.split(",") if email.strip()]

    @property
    def token_expiry_margin(self) -> timedelta:
        return timedelta(seconds=self.token_expiry_margin_seconds)

    @property
    def client_credentials(self) -> ClientCredentials:
        """Build the credentials borrowed by the OAuth flow controller.

        Returns:
            ClientCredentials: Immutable credentials.

        Raises:
            ConfigurationError: If the client secret is not configured.
        """
        if not self.azure_client_secret:
            raise ConfigurationError(
                "AZURE_CLIENT_SECRET is required for the authorization code exchange"
            )
        return ClientCredentials(
            client_id=self.azure_client_id,
            client_secret=self.azure_client_secret,
            tenant_id=self.azure_tenant_id,
            callback_uri=self.callback_uri,
        )

    def masked_dump(self) -> dict[str, Any]:
        """Return settings as a dict with the client secret masked.

        Returns:
            dict[str, Any]: Printable settings.
        """
        data = self.model_dump(mode="json")
        if data.get("azure_client_secret"):
            data["azure_client_secret"] = "********"
        return data


def get_settings() -> Settings:
    """
    Load and return application settings.

    For tests, construct a :class:`Settings` instance directly or pass a
    mocked settings object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If required settings are missing.
    """
    return Settings()

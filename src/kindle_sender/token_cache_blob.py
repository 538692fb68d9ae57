"""Azure Blob Storage backed token cache.

Objective:
    Keep the :class:`~kindle_sender.models.TokenRecord` in a blob instead of a
    local file, so the sender can run from ephemeral hosts (containers,
    scheduled jobs) without re-authorizing in a browser after every restart.

Key points:
    - Same contract as :class:`kindle_sender.token_store.FileTokenStore`:
      ``load`` never raises, ``save`` raises :class:`CacheError`.
    - Uploads are whole-blob writes, so readers see either the old or the new
      record.
    - The ETag seen by the last ``load`` is sent with ``save``; when another
      writer changed the blob in between, the fresher local record still wins
      after re-reading the ETag.
    - Uses DefaultAzureCredential (Managed Identity in Azure).

Operational notes:
    - The record contains a refresh token. Restrict the container and the
      app identity accordingly.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobClient
from pydantic import ValidationError

from .errors import CacheError
from .models import TokenRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobTokenCacheLocation:
    """Location of the token cache blob.

    Args:
        account_url: Storage account blob endpoint URL.
        container_name: Blob container name.
        blob_name: Blob name inside the container.
    """

    account_url: str
    container_name: str
    blob_name: str


class BlobTokenStore:
    """Store and retrieve the token record from Azure Blob Storage."""

    def __init__(self, location: BlobTokenCacheLocation, max_retries: int = 5) -> None:
        """Initialize the blob token store.

        Args:
            location: Target blob location.
            max_retries: Upload attempts on ETag conflicts.
        """

        self._location = location
        self._max_retries = max_retries
        self._credential = DefaultAzureCredential(exclude_interactive_browser_credential=True)
        self._etag: Optional[str] = None

    def _get_blob_client(self) -> BlobClient:
        """Create a BlobClient using DefaultAzureCredential.

        Returns:
            BlobClient: Configured blob client.
        """

        return BlobClient(
            account_url=self._location.account_url,
            container_name=self._location.container_name,
            blob_name=self._location.blob_name,
            credential=self._credential,
        )

    def _download(self) -> tuple[Optional[bytes], Optional[str]]:
        client = self._get_blob_client()
        try:
            data = client.download_blob().readall()
            etag = client.get_blob_properties().etag
        except ResourceNotFoundError:
            return None, None
        return data, etag

    def load(self) -> Optional[TokenRecord]:
        """Download and parse the cached record.

        Returns:
            Optional[TokenRecord]: The record, or None if the blob is missing,
            unreachable or malformed.
        """

        try:
            data, etag = self._download()
        except AzureError as e:
            logger.warning(f"Failed to load token cache from Azure Blob: {e}")
            return None

        self._etag = etag
        if not data:
            logger.debug("Azure Blob token cache missing")
            return None

        try:
            record = TokenRecord.model_validate_json(data)
        except ValidationError:
            logger.warning("Ignoring malformed token cache in Azure Blob")
            return None

        logger.debug("Loaded token cache from Azure Blob")
        return record

    def save(self, record: TokenRecord) -> None:
        """Upload ``record`` using ETag concurrency.

        Args:
            record: Record to persist.

        Raises:
            CacheError: If the blob cannot be written after retries.
        """

        payload = record.model_dump_json(indent=2).encode("utf-8")
        client = self._get_blob_client()
        etag = self._etag

        for attempt in range(self._max_retries):
            try:
                if etag is None:
                    # Create only if it doesn't exist
                    client.upload_blob(payload, overwrite=False)
                else:
                    # Overwrite only if ETag matches
                    client.upload_blob(
                        payload,
                        overwrite=True,
                        etag=etag,
                        match_condition=MatchConditions.IfNotModified,
                    )
                self._etag = client.get_blob_properties().etag
                logger.debug("Saved token cache to Azure Blob")
                return
            except (ResourceModifiedError, ResourceExistsError):
                logger.warning("Token cache blob ETag conflict; retrying (attempt=%s)", attempt + 1)
                try:
                    _latest, etag = self._download()
                except AzureError as e:
                    raise CacheError(f"Failed to upload token cache blob: {e}") from e
            except AzureError as e:
                raise CacheError(f"Failed to upload token cache blob: {e}") from e

            # Small backoff
            time.sleep(0.2 * (attempt + 1))

        raise CacheError("Failed to upload token cache blob due to repeated ETag conflicts")

    def clear(self) -> bool:
        """Delete the cache blob.

        Returns:
            bool: True if a blob was removed.

        Raises:
            CacheError: If the blob exists but cannot be deleted.
        """

        client = self._get_blob_client()
        try:
            client.delete_blob()
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise CacheError(f"Failed to delete token cache blob: {e}") from e
        self._etag = None
        return True

"""Local file token cache.

Objective:
    Persist the :class:`~kindle_sender.models.TokenRecord` between runs so the
    browser authorization only happens once, and later runs either reuse the
    cached access token or refresh it.

Key points:
    - ``load`` never raises: a missing, unreadable or malformed file means
      "no cache" and the caller authorizes from scratch.
    - ``save`` writes a temporary file in the target directory and renames it
      over the cache, so a crash leaves either the old or the new record.
    - The cache holds a usable refresh token, so the file is created with
      owner-only permissions (``0600``) and its directory with ``0700`` on
      platforms that honour POSIX modes.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from .errors import CacheError
from .models import TokenRecord

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    """Interface shared by the token cache backends."""

    def load(self) -> Optional[TokenRecord]: ...

    def save(self, record: TokenRecord) -> None: ...

    def clear(self) -> bool: ...


class FileTokenStore:
    """Store the token record as JSON in a single local file.

    Args:
        path: Cache file location.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> Optional[TokenRecord]:
        """Read the cached record.

        Returns:
            Optional[TokenRecord]: The record, or None if the file is absent,
            unreadable or does not hold a valid record.
        """
        if not self.path.exists():
            logger.debug("No token cache file found at %s", self.path)
            return None

        try:
            payload = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to read token cache: {e}")
            return None

        try:
            record = TokenRecord.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed token cache {self.path}: {e.error_count()} error(s)")
            return None

        logger.debug("Loaded token cache from %s", self.path)
        return record

    def save(self, record: TokenRecord) -> None:
        """Atomically replace the cache file with ``record``.

        Args:
            record: Record to persist.

        Raises:
            CacheError: If the file cannot be written.
        """
        payload = record.model_dump_json(indent=2)
        directory = self.path.parent
        tmp_name: Optional[str] = None
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            # mkstemp creates the file with mode 0600 on POSIX.
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise CacheError(f"Failed to write token cache {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Could not remove temporary cache file %s", tmp_name)

        logger.debug("Saved token cache to %s", self.path)

    def clear(self) -> bool:
        """Delete the cache file.

        Returns:
            bool: True if a file was removed.

        Raises:
            CacheError: If the file exists but cannot be removed.
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise CacheError(f"Failed to remove token cache {self.path}: {e}") from e
        logger.debug("Cleared token cache")
        return True

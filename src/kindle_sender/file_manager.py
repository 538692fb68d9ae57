"""E-book file operations.

Lists the files waiting in the "to send" directory and moves delivered files
to the "sent" directory. OS errors are wrapped in
:class:`~kindle_sender.errors.FileOperationError`.
"""

import logging
import shutil
from pathlib import Path
from typing import Union

from .errors import FileOperationError

logger = logging.getLogger(__name__)


def list_files(directory: Union[str, Path]) -> list[Path]:
    """List regular files in ``directory`` (not recursive), sorted by name.

    Args:
        directory: Directory to scan.

    Returns:
        list[Path]: File paths.

    Raises:
        FileOperationError: If the directory cannot be read.
    """
    directory = Path(directory)
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        raise FileOperationError(f"Error reading directory {directory}: {e}") from e
    return sorted((entry for entry in entries if entry.is_file()), key=lambda p: p.name)


def move_file(source: Union[str, Path], destination_dir: Union[str, Path]) -> Path:
    """Move ``source`` into ``destination_dir``, keeping its name.

    The destination directory is created if needed. An existing file with the
    same name is replaced.

    Args:
        source: File to move.
        destination_dir: Target directory.

    Returns:
        Path: New location of the file.

    Raises:
        FileOperationError: If the move fails.
    """
    source = Path(source)
    destination_dir = Path(destination_dir)
    destination = destination_dir / source.name

    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
    except OSError as e:
        raise FileOperationError(f"Failed to move file from {source} to {destination}: {e}") from e

    logger.debug("Moved %s to %s", source, destination)
    return destination

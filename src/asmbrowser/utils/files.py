"""Utility helpers for working with files."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from asmbrowser.models import DirectoryEntry, DirectoryListing

LOGGER = logging.getLogger(__name__)

ASSEMBLY_EXTENSIONS = (".dll", ".exe")
HOME_ALIASES = ("~", "$HOME")


def is_assembly_path(path: Path | str) -> bool:
    """True when the file extension marks a .NET assembly candidate."""
    return Path(path).suffix.lower() in ASSEMBLY_EXTENSIONS


def normalize_browse_path(raw: str | None) -> Path:
    """Map a user supplied path to an absolute, normalised directory path.

    ``~`` and ``$HOME`` name the home directory; relative paths are anchored
    at the filesystem root so ``..`` can never climb above it.
    """
    value = (raw or "").strip() or os.sep
    if value in HOME_ALIASES:
        return Path.home()
    if not os.path.isabs(value):
        value = os.path.join(os.sep, value)
    return Path(os.path.normpath(value))


def list_directory(raw_path: str | None) -> DirectoryListing:
    """List sub-directories and assembly files of a directory.

    Raises ``FileNotFoundError`` if the directory does not exist. Entries that
    cannot be inspected are left out.
    """
    directory = normalize_browse_path(raw_path)
    if not directory.is_dir():
        raise FileNotFoundError(f"Directory not found: {directory}")

    parent = directory.parent
    listing = DirectoryListing(
        current_path=directory,
        parent_path=parent if parent != directory else None,
    )

    for child in sorted(directory.iterdir(), key=lambda item: item.name):
        try:
            if child.is_dir():
                stat = child.stat()
                listing.directories.append(
                    DirectoryEntry(
                        name=child.name,
                        path=child,
                        is_directory=True,
                        last_modified=stat.st_mtime,
                    )
                )
            elif child.is_file() and is_assembly_path(child):
                stat = child.stat()
                listing.files.append(
                    DirectoryEntry(
                        name=child.name,
                        path=child,
                        is_directory=False,
                        last_modified=stat.st_mtime,
                        size=stat.st_size,
                        extension=child.suffix.lower(),
                    )
                )
        except OSError as exc:
            LOGGER.debug("Skipping %s: %s", child, exc)

    return listing

"""Directory-backed assembly registry."""

from __future__ import annotations

import itertools
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Iterator, List

from asmbrowser.ingestion.probe import probe_assembly
from asmbrowser.models import AssemblyRecord
from asmbrowser.utils.files import ASSEMBLY_EXTENSIONS, is_assembly_path

LOGGER = logging.getLogger(__name__)

EXPORT_DIRNAME = "exported"
_STAGING_PREFIX = ".upload-"
_STAGING_SUFFIX = ".part"


class InvalidFileNameError(ValueError):
    """Raised when an uploaded file name cannot be stored safely."""


class AssemblyNotFoundError(LookupError):
    """Raised when an identifier does not resolve to a stored file."""


def sanitize_file_name(file_name: str) -> str:
    """Strip any directory part from a client supplied file name."""
    name = file_name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if (
        name in ("", ".", "..")
        or "\0" in name
        or name.startswith(_STAGING_PREFIX)
        or Path(name).stem in (".", "..")
    ):
        raise InvalidFileNameError(f"Invalid file name: {file_name!r}")
    return name


def _candidate_names(name: str) -> Iterator[str]:
    yield name
    stem, ext = os.path.splitext(name)
    for counter in itertools.count(1):
        yield f"{stem}_{counter}{ext}"


def _extension_rank(path: Path) -> int:
    suffix = path.suffix.lower()
    if suffix in ASSEMBLY_EXTENSIONS:
        return ASSEMBLY_EXTENSIONS.index(suffix)
    return len(ASSEMBLY_EXTENSIONS)


class AssemblyStore:
    """Registry of uploaded assemblies kept as plain files in one directory.

    The directory listing is the index: every call re-reads the directory, so
    no state is shared between calls and no locking is needed. Identifiers are
    stored file names without their extension.
    """

    def __init__(self, upload_dir: Path) -> None:
        self.upload_dir = Path(upload_dir)

    def ensure_dir(self) -> Path:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        return self.upload_dir

    # -- writes -------------------------------------------------------------

    def put(self, file_name: str, data: bytes) -> AssemblyRecord:
        """Store an uploaded payload and return its record.

        A stored file with the same candidate name and the same size is taken
        to be the same upload and is reused without writing.
        Candidates whose stem already belongs to another stored file are
        skipped, so every id maps to exactly one file.
        """
        name = sanitize_file_name(file_name)
        return self._place(name, len(data), lambda handle: handle.write(data))

    def import_file(self, source: Path) -> AssemblyRecord:
        """Copy a file from elsewhere on disk into the store."""
        source = Path(source)
        name = sanitize_file_name(source.name)
        size = source.stat().st_size

        def copy(handle) -> None:
            with source.open("rb") as reader:
                shutil.copyfileobj(reader, handle)

        return self._place(name, size, copy)

    def _place(self, name: str, size: int, write: Callable) -> AssemblyRecord:
        self.ensure_dir()
        staged: Path | None = None
        try:
            for candidate in _candidate_names(name):
                target = self.upload_dir / candidate
                while True:
                    try:
                        existing_size = target.stat().st_size
                    except FileNotFoundError:
                        existing_size = None

                    if existing_size is not None:
                        if existing_size == size and target.is_file():
                            LOGGER.info("Reusing %s for upload of %s", candidate, name)
                            return self._record(target)
                        break

                    if self._stem_taken(target):
                        break

                    if staged is None:
                        staged = self._stage(write)
                    try:
                        os.link(staged, target)
                    except FileExistsError:
                        # Lost a race for this name; look at what won it.
                        continue
                    if self._stem_owner(target.stem) != target:
                        # A file with the same stem was linked concurrently and wins the id.
                        target.unlink(missing_ok=True)
                        break
                    LOGGER.info("Stored %s (%d bytes)", candidate, size)
                    return self._record(target)
        finally:
            if staged is not None:
                staged.unlink(missing_ok=True)

    def _stage(self, write: Callable) -> Path:
        fd, staged_name = tempfile.mkstemp(
            prefix=_STAGING_PREFIX, suffix=_STAGING_SUFFIX, dir=self.upload_dir
        )
        staged = Path(staged_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                write(handle)
        except Exception:
            staged.unlink(missing_ok=True)
            raise
        return staged

    def _stem_taken(self, target: Path) -> bool:
        return any(path.stem == target.stem and path.name != target.name for path in self._stored_files())

    def _stem_owner(self, stem: str) -> Path | None:
        matches = [path for path in self._stored_files() if path.stem == stem]
        if not matches:
            return None
        return min(matches, key=lambda path: (_extension_rank(path), path.name))

    def delete(self, assembly_id: str) -> Path:
        """Remove a stored assembly, returning the path that was deleted."""
        path = self.resolve(assembly_id)
        if path is None:
            raise AssemblyNotFoundError(assembly_id)
        path.unlink()
        LOGGER.info("Deleted %s", path.name)
        return path

    # -- reads --------------------------------------------------------------

    def resolve(self, assembly_id: str) -> Path | None:
        """Map an identifier, with or without extension, to a stored file."""
        if not assembly_id or assembly_id in (".", "..") or "/" in assembly_id or "\\" in assembly_id:
            return None
        if not self.upload_dir.is_dir():
            return None

        exact = self.upload_dir / assembly_id
        if exact.is_file() and not assembly_id.startswith(_STAGING_PREFIX):
            return exact

        return self._stem_owner(assembly_id)

    def find(self, assembly_id: str) -> AssemblyRecord | None:
        path = self.resolve(assembly_id)
        if path is None:
            return None
        return self._record(path)

    def list(self) -> List[AssemblyRecord]:
        """Return a record for every stored assembly, sorted by file name."""
        records: List[AssemblyRecord] = []
        for path in self._stored_files():
            if not is_assembly_path(path):
                continue
            try:
                records.append(self._record(path))
            except OSError as exc:
                # Removed between the directory scan and the stat call.
                LOGGER.debug("Skipping %s: %s", path, exc)
        return records

    def file_path(self, file_name: str) -> Path | None:
        """Locate a stored file by its exact name for raw download."""
        try:
            name = sanitize_file_name(file_name)
        except InvalidFileNameError:
            return None
        if name != file_name:
            return None
        path = self.upload_dir / name
        return path if path.is_file() else None

    def export_dir(self, assembly_path: Path) -> Path:
        return self.upload_dir / EXPORT_DIRNAME / Path(assembly_path).stem

    def _stored_files(self) -> List[Path]:
        if not self.upload_dir.is_dir():
            return []
        return sorted(
            (
                path
                for path in self.upload_dir.iterdir()
                if path.is_file() and not path.name.startswith(_STAGING_PREFIX)
            ),
            key=lambda path: path.name,
        )

    def _record(self, path: Path) -> AssemblyRecord:
        stat = path.stat()
        metadata = probe_assembly(path)
        return AssemblyRecord(
            id=path.stem,
            display_name=metadata.name or path.name,
            stored_file_name=path.name,
            version=metadata.version,
            size_bytes=stat.st_size,
            last_modified=stat.st_mtime,
            path=path.resolve(),
        )

"""Cheap assembly manifest reader used for registry listings."""

from __future__ import annotations

import logging
from pathlib import Path

import dnfile

from asmbrowser.models import UNKNOWN_VERSION, AssemblyMetadata

LOGGER = logging.getLogger(__name__)


def format_version(row) -> str:
    """Render the four version columns of an Assembly row as ``a.b.c.d``."""
    return f"{row.MajorVersion}.{row.MinorVersion}.{row.BuildNumber}.{row.RevisionNumber}"


def read_assembly_metadata(pe: dnfile.dnPE) -> AssemblyMetadata:
    """Read name and version from an already opened image.

    Raises ``ValueError`` when the image has no CLR header or no Assembly row
    (netmodules, native binaries).
    """
    net = pe.net
    if net is None or net.mdtables is None:
        raise ValueError("not a .NET image")
    table = net.mdtables.Assembly
    if table is None or not table.rows:
        raise ValueError("no assembly manifest")
    row = table.rows[0]
    return AssemblyMetadata(name=str(row.Name), version=format_version(row))


def probe_assembly(path: Path) -> AssemblyMetadata:
    """Return the declared name and version of ``path``.

    Only the PE headers and metadata tables are parsed. Any failure maps to
    ``AssemblyMetadata(name=None, version="Unknown")``.
    """
    try:
        pe = dnfile.dnPE(str(path))
    except Exception as exc:
        LOGGER.debug("Unable to open %s as a PE image: %s", path, exc)
        return AssemblyMetadata(name=None, version=UNKNOWN_VERSION)

    try:
        return read_assembly_metadata(pe)
    except Exception as exc:
        LOGGER.debug("No readable manifest in %s: %s", path, exc)
        return AssemblyMetadata(name=None, version=UNKNOWN_VERSION)
    finally:
        pe.close()

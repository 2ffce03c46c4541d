"""Core asmbrowser data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Union

UNKNOWN_VERSION = "Unknown"


def _iso_timestamp(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()


@dataclass(slots=True)
class AssemblyRecord:
    """One binary file held by the assembly store."""

    id: str
    display_name: str
    stored_file_name: str
    version: str
    size_bytes: int
    last_modified: float
    path: Path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "fileName": self.stored_file_name,
            "version": self.version,
            "size": self.size_bytes,
            "lastModified": _iso_timestamp(self.last_modified),
            "path": str(self.path),
        }


@dataclass(slots=True)
class UploadedPayload:
    """File part extracted from a multipart request body."""

    file_name: str
    data: bytes


@dataclass(slots=True)
class AssemblyMetadata:
    """Name and version declared in an assembly manifest."""

    name: str | None
    version: str = UNKNOWN_VERSION


@dataclass(slots=True)
class DirectoryEntry:
    name: str
    path: Path
    is_directory: bool
    last_modified: float
    size: int | None = None
    extension: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "path": str(self.path),
            "isDirectory": self.is_directory,
            "lastModified": _iso_timestamp(self.last_modified),
        }
        if not self.is_directory:
            data["size"] = self.size
            data["extension"] = self.extension
        return data


@dataclass(slots=True)
class DirectoryListing:
    current_path: Path
    parent_path: Path | None
    directories: List[DirectoryEntry] = field(default_factory=list)
    files: List[DirectoryEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPath": str(self.current_path),
            "parentPath": str(self.parent_path) if self.parent_path is not None else None,
            "directories": [entry.to_dict() for entry in self.directories],
            "files": [entry.to_dict() for entry in self.files],
        }


class TypeKind(str, Enum):
    CLASS = "class"
    STRUCT = "struct"
    INTERFACE = "interface"
    ENUM = "enum"
    DELEGATE = "delegate"


class MemberKind(str, Enum):
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    PROPERTY = "property"
    FIELD = "field"
    EVENT = "event"


@dataclass(slots=True)
class MemberNode:
    """Leaf of the type tree. Members never have children."""

    name: str
    full_name: str
    kind: MemberKind

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "fullName": self.full_name, "kind": self.kind.value}


@dataclass(slots=True)
class TypeNode:
    """Type definition with its nested types and members."""

    name: str
    full_name: str
    namespace: str
    kind: TypeKind
    children: List[Union["TypeNode", MemberNode]] = field(default_factory=list)

    @property
    def members(self) -> List[MemberNode]:
        return [child for child in self.children if isinstance(child, MemberNode)]

    @property
    def nested_types(self) -> List["TypeNode"]:
        return [child for child in self.children if isinstance(child, TypeNode)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fullName": self.full_name,
            "namespace": self.namespace,
            "kind": self.kind.value,
            "children": [child.to_dict() for child in self.children],
        }

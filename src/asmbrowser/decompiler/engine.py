"""Decompiler backend.

Type and member trees come straight from the metadata tables (via dnfile);
C# source is produced by the ``ilspycmd`` tool from ICSharpCode.Decompiler,
which runs as a subprocess.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Set

import dnfile

from asmbrowser.config import DEFAULT_ILSPYCMD
from asmbrowser.models import MemberKind, MemberNode, TypeKind, TypeNode

LOGGER = logging.getLogger(__name__)

EMPTY_MODULE_PLACEHOLDER = "// No decompilable types found in this assembly"

_INTERFACE_FLAG = 0x20

_BASE_TYPE_KINDS = {
    "System.Enum": TypeKind.ENUM,
    "System.ValueType": TypeKind.STRUCT,
    "System.MulticastDelegate": TypeKind.DELEGATE,
    "System.Delegate": TypeKind.DELEGATE,
}

_CONSTRUCTOR_NAMES = {
    ".ctor": "Constructor",
    ".cctor": "Static Constructor",
}


class DecompilationError(RuntimeError):
    """Raised when an assembly cannot be read or decompiled."""


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _row_index(ref: Any) -> int | None:
    return getattr(ref, "row_index", None)


def _referenced_rows(refs: Iterable[Any] | None) -> List[Any]:
    rows = []
    for ref in refs or ():
        row = getattr(ref, "row", None)
        if row is not None:
            rows.append(row)
    return rows


def _table_rows(tables: Any, name: str) -> List[Any]:
    table = getattr(tables, name, None)
    if table is None or not table.rows:
        return []
    return list(table.rows)


def _member_map(tables: Any, map_table: str, list_column: str) -> Dict[int, List[Any]]:
    """Index PropertyMap/EventMap rows by the TypeDef row they belong to."""
    members: Dict[int, List[Any]] = {}
    for row in _table_rows(tables, map_table):
        parent = _row_index(getattr(row, "Parent", None))
        if parent is None:
            continue
        members.setdefault(parent, []).extend(_referenced_rows(getattr(row, list_column, None)))
    return members


def _is_interface(flags: Any) -> bool:
    if getattr(flags, "tdInterface", False):
        return True
    try:
        return bool(int(flags) & _INTERFACE_FLAG)
    except (TypeError, ValueError):
        return False


def _qualified(namespace: str, name: str) -> str:
    return f"{namespace}.{name}" if namespace else name


def _type_kind(row: Any, full_name: str) -> TypeKind:
    if _is_interface(getattr(row, "Flags", None)):
        return TypeKind.INTERFACE
    base = getattr(getattr(row, "Extends", None), "row", None)
    if base is None:
        return TypeKind.CLASS
    base_name = _qualified(_text(getattr(base, "TypeNamespace", None)), _text(getattr(base, "TypeName", None)))
    kind = _BASE_TYPE_KINDS.get(base_name, TypeKind.CLASS)
    # System.Enum itself derives from ValueType but is a class.
    if full_name in _BASE_TYPE_KINDS:
        return TypeKind.CLASS
    return kind


class _TypeTreeBuilder:
    def __init__(self, tables: Any) -> None:
        self.typedefs = _table_rows(tables, "TypeDef")
        self.nested: Dict[int, List[int]] = {}
        self.nested_indexes: Set[int] = set()
        for row in _table_rows(tables, "NestedClass"):
            inner = _row_index(getattr(row, "NestedClass", None))
            outer = _row_index(getattr(row, "EnclosingClass", None))
            if inner is None or outer is None:
                continue
            self.nested_indexes.add(inner)
            self.nested.setdefault(outer, []).append(inner)
        self.properties = _member_map(tables, "PropertyMap", "PropertyList")
        self.events = _member_map(tables, "EventMap", "EventList")

    def top_level(self) -> List[TypeNode]:
        types: List[TypeNode] = []
        for index, row in enumerate(self.typedefs, start=1):
            if index in self.nested_indexes:
                continue
            try:
                types.append(self.build(index, row, enclosing=None, seen=set()))
            except Exception as exc:
                LOGGER.warning("Failed to process type %s: %s", _text(getattr(row, "TypeName", None)), exc)
        return types

    def build(self, index: int, row: Any, enclosing: TypeNode | None, seen: Set[int]) -> TypeNode:
        if index in seen:
            raise ValueError(f"cyclic nesting at TypeDef row {index}")
        seen.add(index)

        name = _text(row.TypeName)
        if enclosing is None:
            namespace = _text(row.TypeNamespace)
            full_name = _qualified(namespace, name)
        else:
            namespace = enclosing.namespace
            full_name = f"{enclosing.full_name}+{name}"

        node = TypeNode(name=name, full_name=full_name, namespace=namespace, kind=_type_kind(row, full_name))

        for nested_index in self.nested.get(index, []):
            if 0 < nested_index <= len(self.typedefs):
                node.children.append(
                    self.build(nested_index, self.typedefs[nested_index - 1], enclosing=node, seen=seen)
                )

        for method in _referenced_rows(getattr(row, "MethodList", None)):
            method_name = _text(method.Name)
            if method_name in _CONSTRUCTOR_NAMES:
                node.children.append(
                    MemberNode(
                        name=_CONSTRUCTOR_NAMES[method_name],
                        full_name=f"{full_name}.{method_name}",
                        kind=MemberKind.CONSTRUCTOR,
                    )
                )
            else:
                node.children.append(self._member(full_name, method_name, MemberKind.METHOD))

        for prop in self.properties.get(index, []):
            node.children.append(self._member(full_name, _text(prop.Name), MemberKind.PROPERTY))
        for field in _referenced_rows(getattr(row, "FieldList", None)):
            node.children.append(self._member(full_name, _text(field.Name), MemberKind.FIELD))
        for event in self.events.get(index, []):
            node.children.append(self._member(full_name, _text(event.Name), MemberKind.EVENT))
        return node

    @staticmethod
    def _member(type_name: str, name: str, kind: MemberKind) -> MemberNode:
        return MemberNode(name=name, full_name=f"{type_name}.{name}", kind=kind)


def build_type_tree(tables: Any) -> List[TypeNode]:
    """Build top-level type nodes from dnfile metadata tables.

    Types that fail to build are logged and left out.
    """
    return _TypeTreeBuilder(tables).top_level()


class ILSpyDecompiler:
    """Decompiler facade over dnfile and the ``ilspycmd`` CLI."""

    def __init__(self, executable: str = DEFAULT_ILSPYCMD, *, timeout: float | None = None) -> None:
        self.executable = executable
        self.timeout = timeout

    def list_top_level_types(self, path: Path) -> List[TypeNode]:
        try:
            pe = dnfile.dnPE(str(path))
        except Exception as exc:
            raise DecompilationError(f"Unable to read {Path(path).name}: {exc}") from exc
        try:
            net = pe.net
            if net is None or net.mdtables is None:
                raise DecompilationError(f"{Path(path).name} is not a .NET assembly")
            return build_type_tree(net.mdtables)
        finally:
            pe.close()

    def decompile_type(self, path: Path, full_name: str) -> str:
        return self._run(["-t", full_name, str(path)])

    def decompile_module(self, path: Path) -> str:
        code = self._run([str(path)])
        if not code.strip():
            return EMPTY_MODULE_PLACEHOLDER
        return code

    def _run(self, args: Sequence[str]) -> str:
        command = [self.executable, *args]
        LOGGER.debug("Running %s", " ".join(command))
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DecompilationError(
                f"{self.executable} not found. Install it with 'dotnet tool install -g ilspycmd'"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise DecompilationError(f"Decompilation timed out after {self.timeout}s") from exc

        if completed.returncode != 0:
            message = completed.stderr.strip() or completed.stdout.strip()
            raise DecompilationError(message or f"{self.executable} exited with code {completed.returncode}")
        return completed.stdout

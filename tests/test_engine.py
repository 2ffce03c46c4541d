"""Tests for the decompiler backend."""

from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from asmbrowser.decompiler.engine import (
    EMPTY_MODULE_PLACEHOLDER,
    DecompilationError,
    ILSpyDecompiler,
    build_type_tree,
)
from asmbrowser.models import MemberKind, MemberNode, TypeKind, TypeNode


def _ref(index: int, row) -> SimpleNamespace:
    return SimpleNamespace(row_index=index, row=row)


def _named(name: str) -> SimpleNamespace:
    return SimpleNamespace(Name=name)


def _type_ref(namespace: str, name: str) -> SimpleNamespace:
    return SimpleNamespace(row=SimpleNamespace(TypeNamespace=namespace, TypeName=name))


def _typedef(namespace: str, name: str, *, extends=None, flags=0, methods=(), fields=()) -> SimpleNamespace:
    return SimpleNamespace(
        TypeNamespace=namespace,
        TypeName=name,
        Flags=flags,
        Extends=extends,
        MethodList=[_ref(i, _named(m)) for i, m in enumerate(methods, start=1)],
        FieldList=[_ref(i, _named(f)) for i, f in enumerate(fields, start=1)],
    )


def _table(rows) -> SimpleNamespace:
    return SimpleNamespace(rows=list(rows))


@pytest.fixture
def tables() -> SimpleNamespace:
    object_ref = _type_ref("System", "Object")
    typedefs = [
        _typedef("", "<Module>"),
        _typedef(
            "Acme",
            "Widget",
            extends=object_ref,
            methods=[".ctor", ".cctor", "Run", "get_Count"],
            fields=["_count"],
        ),
        _typedef("Acme", "Color", extends=_type_ref("System", "Enum"), fields=["value__", "Red"]),
        _typedef("Acme", "IShape", flags=SimpleNamespace(tdInterface=True), methods=["Area"]),
        _typedef("", "Inner", extends=object_ref, methods=["Poke"]),
        _typedef("Acme", "Point", extends=_type_ref("System", "ValueType"), fields=["X", "Y"]),
        _typedef("Acme", "Handler", extends=_type_ref("System", "MulticastDelegate"), methods=["Invoke"]),
        _typedef("", "Deeper", extends=object_ref),
    ]
    return SimpleNamespace(
        TypeDef=_table(typedefs),
        NestedClass=_table(
            [
                SimpleNamespace(NestedClass=_ref(5, typedefs[4]), EnclosingClass=_ref(2, typedefs[1])),
                SimpleNamespace(NestedClass=_ref(8, typedefs[7]), EnclosingClass=_ref(5, typedefs[4])),
            ]
        ),
        PropertyMap=_table(
            [SimpleNamespace(Parent=_ref(2, typedefs[1]), PropertyList=[_ref(1, _named("Count"))])]
        ),
        EventMap=_table(
            [SimpleNamespace(Parent=_ref(2, typedefs[1]), EventList=[_ref(1, _named("Changed"))])]
        ),
    )


class TestBuildTypeTree:
    """Tests for build_type_tree."""

    def test_only_top_level_types(self, tables: SimpleNamespace) -> None:
        types = build_type_tree(tables)

        assert [t.full_name for t in types] == [
            "<Module>",
            "Acme.Widget",
            "Acme.Color",
            "Acme.IShape",
            "Acme.Point",
            "Acme.Handler",
        ]

    def test_type_kinds(self, tables: SimpleNamespace) -> None:
        kinds = {t.name: t.kind for t in build_type_tree(tables)}

        assert kinds["Widget"] is TypeKind.CLASS
        assert kinds["Color"] is TypeKind.ENUM
        assert kinds["IShape"] is TypeKind.INTERFACE
        assert kinds["Point"] is TypeKind.STRUCT
        assert kinds["Handler"] is TypeKind.DELEGATE
        assert kinds["<Module>"] is TypeKind.CLASS

    def test_members_in_order(self, tables: SimpleNamespace) -> None:
        widget = build_type_tree(tables)[1]

        assert [(c.name, c.kind) for c in widget.members] == [
            ("Constructor", MemberKind.CONSTRUCTOR),
            ("Static Constructor", MemberKind.CONSTRUCTOR),
            ("Run", MemberKind.METHOD),
            ("get_Count", MemberKind.METHOD),
            ("Count", MemberKind.PROPERTY),
            ("_count", MemberKind.FIELD),
            ("Changed", MemberKind.EVENT),
        ]
        assert widget.members[0].full_name == "Acme.Widget..ctor"
        assert widget.members[2].full_name == "Acme.Widget.Run"

    def test_nested_types_come_first(self, tables: SimpleNamespace) -> None:
        widget = build_type_tree(tables)[1]

        assert isinstance(widget.children[0], TypeNode)
        inner = widget.nested_types[0]
        assert inner.full_name == "Acme.Widget+Inner"
        assert inner.namespace == "Acme"
        assert inner.members[0].full_name == "Acme.Widget+Inner.Poke"
        assert inner.nested_types[0].full_name == "Acme.Widget+Inner+Deeper"

    def test_broken_type_is_skipped(self, tables: SimpleNamespace) -> None:
        tables.TypeDef.rows.append(
            SimpleNamespace(
                TypeNamespace="Acme",
                TypeName="Broken",
                Flags=0,
                Extends=None,
                MethodList=[_ref(1, SimpleNamespace())],
                FieldList=[],
            )
        )

        names = [t.name for t in build_type_tree(tables)]

        assert "Broken" not in names
        assert "Widget" in names

    def test_missing_optional_tables(self) -> None:
        tables = SimpleNamespace(TypeDef=_table([_typedef("Acme", "Solo", methods=["Go"])]))

        types = build_type_tree(tables)

        assert len(types) == 1
        assert types[0].members == [MemberNode(name="Go", full_name="Acme.Solo.Go", kind=MemberKind.METHOD)]

    def test_empty_tables(self) -> None:
        assert build_type_tree(SimpleNamespace()) == []

    def test_serialises_to_json_shape(self, tables: SimpleNamespace) -> None:
        data = build_type_tree(tables)[2].to_dict()

        assert data["kind"] == "enum"
        assert data["namespace"] == "Acme"
        assert data["children"][1] == {"name": "Red", "fullName": "Acme.Color.Red", "kind": "field"}


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestILSpyDecompiler:
    """Tests for ILSpyDecompiler."""

    def test_decompile_type_command(self, tmp_path: Path) -> None:
        path = tmp_path / "Acme.dll"
        decompiler = ILSpyDecompiler("ilspycmd", timeout=30)
        with patch(
            "asmbrowser.decompiler.engine.subprocess.run",
            return_value=_completed(stdout="public class Widget {}"),
        ) as mock_run:
            code = decompiler.decompile_type(path, "Acme.Widget")

        assert code == "public class Widget {}"
        assert mock_run.call_args[0][0] == ["ilspycmd", "-t", "Acme.Widget", str(path)]
        assert mock_run.call_args[1]["timeout"] == 30

    def test_decompile_module_command(self, tmp_path: Path) -> None:
        path = tmp_path / "Acme.dll"
        with patch(
            "asmbrowser.decompiler.engine.subprocess.run",
            return_value=_completed(stdout="namespace Acme {}"),
        ) as mock_run:
            code = ILSpyDecompiler().decompile_module(path)

        assert code == "namespace Acme {}"
        assert mock_run.call_args[0][0] == ["ilspycmd", str(path)]

    def test_empty_module_placeholder(self, tmp_path: Path) -> None:
        with patch("asmbrowser.decompiler.engine.subprocess.run", return_value=_completed(stdout="  \n")):
            code = ILSpyDecompiler().decompile_module(tmp_path / "Empty.dll")

        assert code == EMPTY_MODULE_PLACEHOLDER

    def test_non_zero_exit_raises(self, tmp_path: Path) -> None:
        with patch(
            "asmbrowser.decompiler.engine.subprocess.run",
            return_value=_completed(returncode=1, stderr="Type not found"),
        ):
            with pytest.raises(DecompilationError, match="Type not found"):
                ILSpyDecompiler().decompile_type(tmp_path / "Acme.dll", "Acme.Missing")

    def test_missing_executable_raises(self, tmp_path: Path) -> None:
        with patch("asmbrowser.decompiler.engine.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(DecompilationError, match="not found"):
                ILSpyDecompiler("no-such-ilspycmd").decompile_module(tmp_path / "Acme.dll")

    def test_timeout_raises(self, tmp_path: Path) -> None:
        with patch(
            "asmbrowser.decompiler.engine.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="ilspycmd", timeout=5),
        ):
            with pytest.raises(DecompilationError, match="timed out"):
                ILSpyDecompiler(timeout=5).decompile_module(tmp_path / "Acme.dll")

    def test_list_types_on_garbage_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "garbage.dll"
        path.write_bytes(b"not a portable executable")

        with pytest.raises(DecompilationError):
            ILSpyDecompiler().list_top_level_types(path)

    def test_list_types_on_native_image_raises(self, tmp_path: Path) -> None:
        pe = MagicMock()
        pe.net = None
        with patch("asmbrowser.decompiler.engine.dnfile.dnPE", return_value=pe):
            with pytest.raises(DecompilationError, match="not a .NET assembly"):
                ILSpyDecompiler().list_top_level_types(tmp_path / "native.dll")
        pe.close.assert_called_once()

    def test_list_types_reads_metadata_tables(self, tmp_path: Path, tables: SimpleNamespace) -> None:
        pe = MagicMock()
        pe.net.mdtables = tables
        with patch("asmbrowser.decompiler.engine.dnfile.dnPE", return_value=pe):
            types = ILSpyDecompiler().list_top_level_types(tmp_path / "Acme.dll")

        assert [t.name for t in types][:2] == ["<Module>", "Widget"]
        pe.close.assert_called_once()

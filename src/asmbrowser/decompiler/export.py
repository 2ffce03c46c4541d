"""Export an assembly as a C# project tree."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple

from asmbrowser.models import TypeNode

LOGGER = logging.getLogger(__name__)

COMPILER_GENERATED_MARKER = "<"

PROJECT_TEMPLATE = """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <OutputType>Library</OutputType>
    <TargetFramework>net8.0</TargetFramework>
    <AssemblyName>{name}</AssemblyName>
    <Nullable>enable</Nullable>
    <ImplicitUsings>enable</ImplicitUsings>
  </PropertyGroup>
</Project>
"""


@dataclass(slots=True)
class ExportResult:
    path: Path
    files: List[Path] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0


def is_compiler_generated(type_node: TypeNode) -> bool:
    return type_node.name.startswith(COMPILER_GENERATED_MARKER) or type_node.full_name.startswith(
        COMPILER_GENERATED_MARKER
    )


def namespace_dir(root: Path, namespace: str) -> Path:
    """Directory for a namespace: one level per dot-separated segment."""
    segments = [segment.replace("/", "_").replace("\\", "_") for segment in namespace.split(".") if segment]
    return root.joinpath(*segments) if segments else root


def source_file_name(type_node: TypeNode) -> str:
    simple_name = type_node.full_name
    prefix = f"{type_node.namespace}." if type_node.namespace else ""
    if prefix and simple_name.startswith(prefix):
        simple_name = simple_name[len(prefix):]
    simple_name = simple_name.replace("+", ".").replace("/", "_").replace("\\", "_")
    return f"{simple_name}.cs"


def _unique_path(directory: Path, file_name: str) -> Path:
    candidate = directory / file_name
    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def export_project(decompiler, assembly_path: Path, export_dir: Path) -> ExportResult:
    """Decompile every top-level type of ``assembly_path`` into ``export_dir``.

    The export directory is recreated from scratch. Compiler-generated types
    (names starting with ``<``) are skipped, as is any type the decompiler
    fails on.
    """
    assembly_path = Path(assembly_path)
    project_name = assembly_path.stem

    if export_dir.exists():
        shutil.rmtree(export_dir)
    export_dir.mkdir(parents=True)

    result = ExportResult(path=export_dir)
    project_file = export_dir / f"{project_name}.csproj"
    project_file.write_text(PROJECT_TEMPLATE.format(name=project_name), encoding="utf-8")
    result.files.append(project_file)

    by_namespace: Dict[str, List[Tuple[TypeNode, str]]] = {}
    for type_node in decompiler.list_top_level_types(assembly_path):
        if is_compiler_generated(type_node):
            result.skipped += 1
            continue
        try:
            code = decompiler.decompile_type(assembly_path, type_node.full_name)
        except Exception as exc:
            LOGGER.error("Failed to decompile type %s: %s", type_node.full_name, exc)
            result.failed += 1
            continue
        by_namespace.setdefault(type_node.namespace, []).append((type_node, code))

    for namespace, entries in by_namespace.items():
        directory = namespace_dir(export_dir, namespace)
        directory.mkdir(parents=True, exist_ok=True)
        for type_node, code in entries:
            target = _unique_path(directory, source_file_name(type_node))
            target.write_text(code, encoding="utf-8")
            result.files.append(target)

    LOGGER.info(
        "Exported %s: %d files, %d skipped, %d failed",
        project_name,
        len(result.files),
        result.skipped,
        result.failed,
    )
    return result

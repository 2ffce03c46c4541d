"""Name search over an assembly's type tree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from asmbrowser.models import TypeNode


@dataclass(slots=True)
class SearchResult:
    name: str
    full_name: str
    kind: str
    type_name: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "fullName": self.full_name, "kind": self.kind}
        if self.type_name is not None:
            data["typeName"] = self.type_name
        return data


def search_types(types: Iterable[TypeNode], query: str) -> List[SearchResult]:
    """Case-insensitive substring match over type and member names.

    Types match on their short or full name, members on their name. Results
    follow metadata order and are not ranked.
    """
    needle = query.casefold()
    results: List[SearchResult] = []
    for type_node in types:
        if needle in type_node.name.casefold() or needle in type_node.full_name.casefold():
            results.append(
                SearchResult(name=type_node.name, full_name=type_node.full_name, kind="type")
            )
        for member in type_node.members:
            if needle in member.name.casefold():
                results.append(
                    SearchResult(
                        name=member.name,
                        full_name=f"{type_node.full_name}.{member.name}",
                        kind=member.kind.value,
                        type_name=type_node.full_name,
                    )
                )
    return results

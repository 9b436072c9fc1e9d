"""Project file tree listing parsed from ``find`` output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

IGNORED_NAMES = ("node_modules", ".git", ".env", "dist", "build", "coverage", ".next")


@dataclass
class FileNode:
    name: str
    path: str
    type: str  # 'file' | 'directory'
    children: list[FileNode] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "path": self.path, "type": self.type}
        if self.type == "directory":
            data["children"] = [child.to_dict() for child in self.children]
        return data


def build_find_script(project_dir: str) -> str:
    """Shell script printing ``d <path>`` / ``f <path>`` lines, sorted."""
    prunes = " -o ".join(f"-name '{name}'" for name in IGNORED_NAMES)
    return (
        f"cd '{project_dir}' && find . \\( {prunes} \\) -prune -o -print | sort | "
        'while IFS= read -r p; do [ "$p" = "." ] && continue; '
        'if [ -d "$p" ]; then echo "d $p"; else echo "f $p"; fi; done'
    )


def build_file_tree(lines: list[str]) -> list[FileNode]:
    """Build a nested tree from ``d ./a`` / ``f ./a/b.txt`` lines.

    Parents are created on demand so input order does not matter.
    """
    index: dict[str, FileNode] = {}
    roots: list[FileNode] = []

    def ensure_dir(path: str) -> FileNode:
        node = index.get(path)
        if node is not None:
            return node
        node = FileNode(name=path.rsplit("/", 1)[-1], path=path, type="directory")
        index[path] = node
        attach(node)
        return node

    def attach(node: FileNode) -> None:
        if "/" in node.path:
            ensure_dir(node.path.rsplit("/", 1)[0]).children.append(node)
        else:
            roots.append(node)

    for raw in lines:
        line = raw.rstrip("\n")
        if len(line) < 3 or line[1] != " " or line[0] not in "df":
            continue
        kind, path = line[0], line[2:]
        if path.startswith("./"):
            path = path[2:]
        if not path or path == ".":
            continue
        if kind == "d":
            ensure_dir(path)
        elif path not in index:
            node = FileNode(name=path.rsplit("/", 1)[-1], path=path, type="file")
            index[path] = node
            attach(node)
    return roots

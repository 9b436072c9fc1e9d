"""Directory scope shared by every agent prompt and the tool boundary."""

from __future__ import annotations

import posixpath

from config.schema import ClusterConfig


class ScopeViolation(ValueError):
    pass


class DirectoryScope:
    """Writable project dir plus read-only example dirs, all sandbox paths."""

    def __init__(self, cluster: ClusterConfig, game_type: str = "3d") -> None:
        self.project_dir = posixpath.normpath(cluster.project_dir)
        self.game_type = game_type
        self.example_dir = cluster.example_dirs.get(game_type)
        self.readable_dirs = [self.project_dir, *(posixpath.normpath(d) for d in cluster.example_dirs.values())]

    def resolve(self, path: str) -> str:
        """Relative paths resolve against the project dir."""
        path = (path or ".").strip()
        return posixpath.normpath(posixpath.join(self.project_dir, path))

    @staticmethod
    def _within(path: str, root: str) -> bool:
        return path == root or path.startswith(root.rstrip("/") + "/")

    def check_write(self, path: str) -> str:
        resolved = self.resolve(path)
        if not self._within(resolved, self.project_dir):
            raise ScopeViolation(f"Writes are only allowed under {self.project_dir}: {resolved}")
        return resolved

    def check_read(self, path: str) -> str:
        resolved = self.resolve(path)
        if not any(self._within(resolved, root) for root in self.readable_dirs):
            allowed = ", ".join(self.readable_dirs)
            raise ScopeViolation(f"Reads are only allowed under {allowed}: {resolved}")
        return resolved

    def rules(self) -> str:
        """Rule block embedded in planner, executor, verifier and fixer prompts."""
        lines = [
            "WORKING DIRECTORY RULES:",
            f"- ALL file writes, edits and new folders MUST stay inside {self.project_dir}",
            f"- NEVER create, write or modify anything outside {self.project_dir}",
        ]
        if self.example_dir:
            lines.append(
                f"- You MAY read {self.example_dir} ({self.game_type} examples) for inspiration; it is READ ONLY"
            )
        lines.append(f"- Relative paths are resolved against {self.project_dir}")
        return "\n".join(lines)

"""LangChain tools bound to one project sandbox.

Tool failures are returned to the model as text; nothing raised here
reaches the agent loop.
"""

from __future__ import annotations

import asyncio
import logging
import shlex

from langchain_core.tools import BaseTool, StructuredTool

from core.task.scope import DirectoryScope, ScopeViolation
from sandbox.errors import SandboxError
from sandbox.file_tree import FileNode, build_file_tree, build_find_script
from sandbox.provider import WorkloadController

logger = logging.getLogger(__name__)

MAX_FULL_CHARS = 10_000
MAX_FULL_LINES = 100
PREVIEW_LINES = 50
BUILD_OUTPUT_TAIL = 4_000
LOG_ERROR_KEYWORDS = ("error", "failed", "cannot find")


def preview_file(path: str, content: str) -> str:
    lines = content.split("\n")
    if len(content) > MAX_FULL_CHARS or len(lines) > MAX_FULL_LINES:
        head = "\n".join(lines[:PREVIEW_LINES])
        tail = "\n".join(lines[-PREVIEW_LINES:])
        omitted = max(len(lines) - 2 * PREVIEW_LINES, 0)
        return (
            f"File: {path} ({len(lines)} lines, {len(content)} chars)\n"
            "Large file truncated for preview\n\n"
            f"First {PREVIEW_LINES} lines:\n```\n{head}\n```\n\n"
            f"... [{omitted} lines omitted] ...\n\n"
            f"Last {PREVIEW_LINES} lines:\n```\n{tail}\n```"
        )
    return f"File content of {path}:\n```\n{content}\n```"


def render_tree(nodes: list[FileNode], max_depth: int, prefix: str = "", depth: int = 0) -> str:
    if depth > max_depth:
        return ""
    visible = [n for n in nodes if not n.name.startswith(".")]
    out = []
    for i, node in enumerate(visible):
        last = i == len(visible) - 1
        out.append(f"{prefix}{'└── ' if last else '├── '}{node.name}\n")
        if node.type == "directory":
            out.append(render_tree(node.children, max_depth, prefix + ("    " if last else "│   "), depth + 1))
    return "".join(out)


def has_error_keywords(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in LOG_ERROR_KEYWORDS)


def build_project_tools(
    controller: WorkloadController,
    project_id: str,
    scope: DirectoryScope,
    *,
    enforce_containment: bool = True,
) -> list[BaseTool]:
    """Build the tool surface for one project."""

    def readable(path: str) -> str:
        return scope.check_read(path) if enforce_containment else scope.resolve(path)

    def writable(path: str) -> str:
        return scope.check_write(path) if enforce_containment else scope.resolve(path)

    async def read_file(path: str) -> str:
        try:
            full = readable(path)
            content = await asyncio.to_thread(controller.read_file, project_id, full)
        except (ScopeViolation, SandboxError) as e:
            return f"Error reading file: {e}"
        return preview_file(path, content)

    async def write_file(path: str, content: str) -> str:
        try:
            full = writable(path)
            await asyncio.to_thread(controller.write_file, project_id, full, content)
        except (ScopeViolation, SandboxError) as e:
            return f"Error writing file: {e}"
        return f"Successfully wrote {len(content.splitlines())} lines to {path}"

    async def list_files(path: str = ".") -> str:
        try:
            full = readable(path)
            result = await asyncio.to_thread(controller.exec_checked, project_id, ["ls", "-la", full])
        except (ScopeViolation, SandboxError) as e:
            return f"Error listing files: {e}"
        return f"Files in {path}:\n{result.output}"

    async def get_folder_structure(path: str = ".", max_depth: int = 2) -> str:
        try:
            full = readable(path)
            result = await asyncio.to_thread(controller.shell, project_id, build_find_script(full))
        except (ScopeViolation, SandboxError) as e:
            return f"Error reading folder structure: {e}"
        tree = render_tree(build_file_tree(result.output.splitlines()), max_depth)
        return f"Folder structure of {path} (depth: {max_depth}):\n```\n{tree}```"

    async def run_shell_command(command: str) -> str:
        script = f"cd {shlex.quote(scope.project_dir)} && {command}"
        try:
            result = await asyncio.to_thread(controller.shell, project_id, script, None, check=False)
        except SandboxError as e:
            return f"Error executing command: {e}"
        output = ((result.output or "") + (result.error or "")).strip()
        if not result.ok:
            return f"Command exited with code {result.exit_code}:\n{output}"
        return output or "Command executed successfully (no output)"

    async def get_recent_logs(seconds: int = 60) -> str:
        logs = await asyncio.to_thread(controller.get_logs, project_id, seconds, 200)
        verdict = "ERRORS DETECTED - fix these issues" if has_error_keywords(logs) else "No errors detected"
        return f"Dev server logs (last {seconds}s):\n```\n{logs}\n```\n\n{verdict}"

    async def run_build() -> str:
        try:
            build = await asyncio.to_thread(controller.build_project, project_id)
        except SandboxError as e:
            return f"BUILD COMMAND FAILED: {e}"
        tail = build.output[-BUILD_OUTPUT_TAIL:]
        if build.success:
            return f"BUILD SUCCESSFUL\n```\n{tail}\n```"
        return f"BUILD FAILED: {build.reason}\n```\n{tail}\n```"

    return [
        StructuredTool.from_function(
            coroutine=read_file,
            name="read_file",
            description="Read a file. Large files return their first and last 50 lines.",
        ),
        StructuredTool.from_function(
            coroutine=write_file,
            name="write_file",
            description=f"Write a file under {scope.project_dir}, creating parent folders.",
        ),
        StructuredTool.from_function(
            coroutine=list_files,
            name="list_files",
            description="List the entries of a directory with sizes.",
        ),
        StructuredTool.from_function(
            coroutine=get_folder_structure,
            name="get_folder_structure",
            description="Show the folder tree (default depth 2), skipping dotfiles and build output.",
        ),
        StructuredTool.from_function(
            coroutine=run_shell_command,
            name="run_shell_command",
            description=f"Run a shell command in {scope.project_dir}.",
        ),
        StructuredTool.from_function(
            coroutine=get_recent_logs,
            name="get_recent_logs",
            description="Read recent dev server logs to check for build or runtime errors.",
        ),
        StructuredTool.from_function(
            coroutine=run_build,
            name="run_build",
            description="Run the production build and report errors. Use it after making changes.",
        ),
    ]

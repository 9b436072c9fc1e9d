"""Build output classification and deployment artifact rewriting.

Build success is inferred from the bundler's text output rather than an exit
code, so the heuristic lives in ``classify_build_output`` alone.
"""

from __future__ import annotations

import mimetypes
import re
from dataclasses import dataclass
from pathlib import PurePosixPath

BUILD_SUCCESS_MARKER = "built in"
BUILD_FAILURE_MARKERS = ("error", "failed")

_MIME_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
    ".txt": "text/plain",
    ".xml": "application/xml",
    ".webp": "image/webp",
    ".map": "application/json",
}

_HTML_ROOT_REF = re.compile(r'(\s(?:src|href))="/([^"]+)"')


@dataclass
class BuildResult:
    success: bool
    output: str
    reason: str = ""


@dataclass
class BuiltArtifact:
    path: str  # relative to dist/
    content: bytes
    mime_type: str


def classify_build_output(output: str) -> BuildResult:
    """Success iff the bundler printed its "built in" summary."""
    if BUILD_SUCCESS_MARKER in output:
        return BuildResult(success=True, output=output)
    lowered = output.lower()
    hits = [marker for marker in BUILD_FAILURE_MARKERS if marker in lowered]
    if hits:
        reason = f"Build output reports {' / '.join(hits)}"
    else:
        reason = "Build output has no success marker"
    return BuildResult(success=False, output=output, reason=reason)


def mime_type_for(path: str) -> str:
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in _MIME_TYPES:
        return _MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def deployment_base_path(project_id: str, prefix: str = "deployments") -> str:
    return f"/{prefix}/{project_id}/dist"


def rewrite_asset_references(relative_path: str, content: bytes, project_id: str, prefix: str = "deployments") -> bytes:
    """Point root-relative asset references at the deployment sub-path.

    Only ``index.html`` and ``.js`` files are rewritten; everything else is
    returned untouched.
    """
    base = deployment_base_path(project_id, prefix)
    name = PurePosixPath(relative_path)
    if name.name == "index.html":
        text = content.decode("utf-8", errors="replace")
        text = _HTML_ROOT_REF.sub(lambda m: f'{m.group(1)}="{base}/{m.group(2)}"', text)
        return text.encode("utf-8")
    if name.suffix == ".js":
        text = content.decode("utf-8", errors="replace")
        text = text.replace('"/assets/', f'"{base}/assets/').replace('"/vite.svg"', f'"{base}/vite.svg"')
        return text.encode("utf-8")
    return content

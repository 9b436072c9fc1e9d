"""Settings and prompt loader.

Configuration priority (highest to lowest):
1. Explicit overrides (tests, CLI)
2. Environment variables (HITBOX_*)
3. Project config (.hitbox/config.json in the working directory)
4. User config (~/.hitbox/config.json, or the file named by HITBOX_CONFIG)
5. Schema defaults

Prompt files are Markdown with YAML frontmatter; built-in prompts live in
core/task/prompts and can be overridden from ~/.hitbox/prompts.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from config.schema import HITBOX_HOME, HitboxSettings
from config.types import PromptConfig

logger = logging.getLogger(__name__)

# env var -> dotted settings path
_ENV_OVERRIDES: dict[str, str] = {
    "HITBOX_DB_PATH": "db_path",
    "HITBOX_CONTROLLER": "controller",
    "HITBOX_NAMESPACE": "cluster.namespace",
    "HITBOX_PREVIEW_DOMAIN": "cluster.preview_domain",
    "HITBOX_KUBECONFIG": "cluster.kubeconfig",
    "HITBOX_LLM_MODEL": "llm.model",
    "HITBOX_LLM_PROVIDER": "llm.model_provider",
    "HITBOX_LLM_API_KEY": "llm.api_key",
    "HITBOX_BLOB_BACKEND": "blob.backend",
    "HITBOX_BLOB_BUCKET": "blob.bucket",
    "HITBOX_BLOB_ENDPOINT_URL": "blob.endpoint_url",
    "HITBOX_BLOB_ACCESS_KEY_ID": "blob.access_key_id",
    "HITBOX_BLOB_SECRET_ACCESS_KEY": "blob.secret_access_key",
    "HITBOX_BLOB_PUBLIC_URL": "blob.public_url",
}


class SettingsLoader:
    """Three-tier settings merge plus prompt discovery."""

    def __init__(self, workspace_root: str | Path | None = None):
        self.workspace_root = Path(workspace_root).resolve() if workspace_root else Path.cwd()
        self._builtin_prompts_dir = Path(__file__).resolve().parent.parent / "core" / "task" / "prompts"

    def load(self, overrides: dict[str, Any] | None = None) -> HitboxSettings:
        merged = self._deep_merge(
            self._load_user_config(),
            self._load_project_config(),
            self._env_config(),
            overrides or {},
        )
        merged = self._expand_env_vars(merged)
        return HitboxSettings(**self._remove_none_values(merged))

    def _load_user_config(self) -> dict[str, Any]:
        explicit = os.environ.get("HITBOX_CONFIG")
        if explicit:
            path = Path(explicit).expanduser()
            if not path.exists():
                raise FileNotFoundError(f"Config not found: {path}")
            return self._load_json(path)
        return self._load_json(HITBOX_HOME / "config.json")

    def _load_project_config(self) -> dict[str, Any]:
        return self._load_json(self.workspace_root / ".hitbox" / "config.json")

    @staticmethod
    def _env_config() -> dict[str, Any]:
        result: dict[str, Any] = {}
        for env_name, dotted in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if not value:
                continue
            node = result
            *parents, leaf = dotted.split(".")
            for part in parents:
                node = node.setdefault(part, {})
            node[leaf] = value
        return result

    @staticmethod
    def _load_json(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable config %s: %s", path, e)
            return {}

    def _deep_merge(self, *dicts: dict[str, Any]) -> dict[str, Any]:
        """Deep merge multiple dictionaries. Later dicts override earlier ones."""
        result: dict[str, Any] = {}
        for d in dicts:
            for key, value in d.items():
                if key not in result:
                    result[key] = value
                elif value is None:
                    continue
                elif isinstance(value, dict) and isinstance(result[key], dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = value
        return result

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively expand ${VAR} and ~ in string values."""
        if isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [self._expand_env_vars(v) for v in obj]
        if isinstance(obj, str):
            return os.path.expandvars(os.path.expanduser(obj))
        return obj

    def _remove_none_values(self, obj: Any) -> Any:
        """Recursively remove None values to allow Pydantic defaults."""
        if isinstance(obj, dict):
            return {k: self._remove_none_values(v) for k, v in obj.items() if v is not None}
        if isinstance(obj, list):
            return [self._remove_none_values(v) for v in obj if v is not None]
        return obj

    # ── Prompt .md parsing ──

    def load_prompts(self) -> dict[str, PromptConfig]:
        """Load prompts by priority (built-in, then user overrides)."""
        prompts: dict[str, PromptConfig] = {}
        for dir_path in (self._builtin_prompts_dir, HITBOX_HOME / "prompts"):
            if not dir_path.exists():
                continue
            for md_file in sorted(dir_path.glob("*.md")):
                prompt = parse_prompt_file(md_file)
                if prompt:
                    prompts[prompt.name] = prompt
        return prompts


def parse_prompt_file(path: Path) -> PromptConfig | None:
    """Parse Markdown file with YAML frontmatter into PromptConfig."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return None

    if not content.startswith("---"):
        return None
    parts = content.split("---", 2)
    if len(parts) < 3:
        return None

    try:
        fm = yaml.safe_load(parts[1])
    except yaml.YAMLError:
        logger.warning("Invalid frontmatter in prompt file %s", path)
        return None

    if not fm or "name" not in fm:
        return None

    return PromptConfig(
        name=fm["name"],
        description=fm.get("description", ""),
        template=parts[2].strip(),
        max_tool_iterations=fm.get("max_tool_iterations"),
        source_dir=path.resolve().parent,
    )


def load_settings(overrides: dict[str, Any] | None = None) -> HitboxSettings:
    return SettingsLoader().load(overrides)

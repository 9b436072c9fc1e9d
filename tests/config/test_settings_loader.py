import json

import pytest
from pydantic import ValidationError

from config.loader import _ENV_OVERRIDES, SettingsLoader, parse_prompt_file


@pytest.fixture
def user_config(tmp_path, monkeypatch):
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "user.json"
    path.write_text(json.dumps({"cluster": {"namespace": "games", "dev_port": 3000}, "llm": {"model": "user-model"}}))
    monkeypatch.setenv("HITBOX_CONFIG", str(path))
    return path


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "workspace"
    (root / ".hitbox").mkdir(parents=True)
    return root


def test_defaults_and_user_file(user_config, workspace):
    settings = SettingsLoader(workspace).load()
    assert settings.cluster.namespace == "games"
    assert settings.cluster.dev_port == 3000
    assert settings.cluster.name_prefix == "proj-"
    assert settings.controller == "kubernetes"
    assert settings.orchestrator.max_iterations == 50


def test_project_file_overrides_user_file(user_config, workspace):
    (workspace / ".hitbox" / "config.json").write_text(json.dumps({"cluster": {"namespace": "team"}}))
    settings = SettingsLoader(workspace).load()
    assert settings.cluster.namespace == "team"
    # sibling keys from the user file survive the deep merge
    assert settings.cluster.dev_port == 3000


def test_env_overrides_files(user_config, workspace, monkeypatch):
    monkeypatch.setenv("HITBOX_CONTROLLER", "local")
    monkeypatch.setenv("HITBOX_BLOB_BACKEND", "filesystem")
    monkeypatch.setenv("HITBOX_LLM_MODEL", "env-model")
    settings = SettingsLoader(workspace).load()
    assert settings.controller == "local"
    assert settings.blob.backend == "filesystem"
    assert settings.llm.model == "env-model"


def test_explicit_overrides_win(user_config, workspace, monkeypatch):
    monkeypatch.setenv("HITBOX_CONTROLLER", "local")
    settings = SettingsLoader(workspace).load({"controller": "kubernetes", "reaper": {"enabled": False}})
    assert settings.controller == "kubernetes"
    assert settings.reaper.enabled is False


def test_env_vars_expand_in_values(user_config, workspace, monkeypatch):
    monkeypatch.setenv("GAME_BUCKET", "arcade")
    (workspace / ".hitbox" / "config.json").write_text(json.dumps({"blob": {"bucket": "${GAME_BUCKET}"}}))
    assert SettingsLoader(workspace).load().blob.bucket == "arcade"


def test_unknown_controller_is_rejected(user_config, workspace, monkeypatch):
    monkeypatch.setenv("HITBOX_CONTROLLER", "nomad")
    with pytest.raises(ValidationError):
        SettingsLoader(workspace).load()


def test_missing_explicit_config_fails(tmp_path, workspace, monkeypatch):
    monkeypatch.setenv("HITBOX_CONFIG", str(tmp_path / "nope.json"))
    with pytest.raises(FileNotFoundError):
        SettingsLoader(workspace).load()


def test_unreadable_project_config_is_ignored(user_config, workspace):
    (workspace / ".hitbox" / "config.json").write_text("{not json")
    assert SettingsLoader(workspace).load().cluster.namespace == "games"


def test_builtin_prompts_load(user_config, workspace):
    prompts = SettingsLoader(workspace).load_prompts()
    assert {"planner", "executor", "verifier", "fixer"} <= set(prompts)
    assert "{instruction}" in prompts["planner"].template


def test_prompt_file_needs_frontmatter_name(tmp_path):
    good = tmp_path / "good.md"
    good.write_text("---\nname: critic\ndescription: reviews\nmax_tool_iterations: 4\n---\nReview {task}\n")
    prompt = parse_prompt_file(good)
    assert prompt.name == "critic"
    assert prompt.max_tool_iterations == 4
    assert prompt.render(task="the jump") == "Review the jump"

    bad = tmp_path / "bad.md"
    bad.write_text("no frontmatter here")
    assert parse_prompt_file(bad) is None

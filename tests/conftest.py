"""Pytest configuration for Hitbox tests.

Ensures the project root is in sys.path so imports work correctly, and
provides in-memory storage, a fake controller and built-in prompts.
"""

import sys
from pathlib import Path

import pytest

# Add project root to sys.path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from config.loader import parse_prompt_file  # noqa: E402
from config.schema import HitboxSettings  # noqa: E402
from storage.container import StorageContainer  # noqa: E402
from tests.fakes.blob import FakeBlobStore  # noqa: E402
from tests.fakes.sandbox import FakeController  # noqa: E402

PROMPTS_DIR = project_root / "core" / "task" / "prompts"


@pytest.fixture
def prompts():
    loaded = {}
    for path in sorted(PROMPTS_DIR.glob("*.md")):
        prompt = parse_prompt_file(path)
        loaded[prompt.name] = prompt
    return loaded


@pytest.fixture
def settings(tmp_path):
    return HitboxSettings(
        controller="local",
        db_path=tmp_path / "hitbox.db",
        readiness={"poll_interval_sec": 0.01, "timeout_sec": 2.0},
        reaper={"enabled": False, "interval_sec": 60, "inactivity_sec": 600},
        blob={"backend": "filesystem", "root_dir": tmp_path / "blobs", "public_url": "https://cdn.example.test"},
    )


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def storage(tmp_path, settings, blob_store):
    container = StorageContainer(tmp_path / "hitbox.db", settings.blob, blob_store=blob_store)
    yield container
    container.close()


@pytest.fixture
def controller():
    return FakeController()

"""LocalController drives real host subprocesses; these tests need sh, tar and base64."""

import time

import pytest

from config.schema import ClusterConfig, SnapshotConfig
from sandbox.errors import SandboxNotFoundError, SnapshotError, TransferError
from sandbox.lifecycle import SnapshotType
from sandbox.providers.local import LocalController
from sandbox.snapshot import SnapshotManager
from storage.providers.sqlite import SQLiteSnapshotRepo
from tests.fakes.blob import FakeBlobStore


@pytest.fixture
def cluster(tmp_path):
    return ClusterConfig(
        app_root=str(tmp_path / "app"),
        project_dir=str(tmp_path / "app" / "game"),
        vcs_install_command="true",
        install_command="true",
        dev_command="sleep 30",
        dev_start_marker=str(tmp_path / "start-dev"),
        exec_timeout_sec=30,
        delete_timeout_sec=5,
    )


@pytest.fixture
def controller(cluster, tmp_path):
    ctl = LocalController(cluster, state_dir=tmp_path / "state", chunk_size=64)
    ctl.create_sandbox("p1", skip_auto_setup=True)
    yield ctl
    ctl.delete_sandbox("p1", wait_for_completion=True)


def _wait_for_log(ctl, text, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        logs = ctl.get_logs("p1", 60)
        if text in logs:
            return logs
        time.sleep(0.05)
    raise AssertionError(f"{text!r} not in logs: {ctl.get_logs('p1', 60)!r}")


def test_exec_requires_running_sandbox(cluster, tmp_path):
    ctl = LocalController(cluster, state_dir=tmp_path / "state")
    assert ctl.get_instance_status("nope") is None
    with pytest.raises(SandboxNotFoundError):
        ctl.exec("nope", ["true"])


def test_binary_transport_survives_chunking(controller, tmp_path):
    payload = bytes(range(256)) * 4
    target = str(tmp_path / "transfer" / "blob.bin")
    controller.put_bytes("p1", target, payload)
    assert controller.get_bytes("p1", target) == payload


def test_transfer_to_vanished_sandbox_raises_transfer_error(cluster, tmp_path):
    ctl = LocalController(cluster, state_dir=tmp_path / "state", transfer_retries=2)
    with pytest.raises(TransferError, match="after 2 attempts"):
        ctl.put_bytes("gone", str(tmp_path / "blob.bin"), b"payload")


def test_read_file_tolerates_binary_content(controller, tmp_path):
    target = tmp_path / "sprite.png"
    target.write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")
    content = controller.read_file("p1", str(target))
    assert content.startswith("\ufffdPNG")


def test_restore_gate_releases_dev_server(controller):
    _wait_for_log(controller, "Waiting for snapshot restore")
    assert "Starting dev server" not in controller.get_logs("p1", 60)
    controller.exec_checked("p1", ["mkdir", "-p", controller.config.project_dir])
    controller.start_dev_server("p1")
    _wait_for_log(controller, "Starting dev server")
    assert controller.get_instance_status("p1").running


def test_delete_clears_start_marker(cluster, tmp_path):
    ctl = LocalController(cluster, state_dir=tmp_path / "state")
    ctl.create_sandbox("p2", skip_auto_setup=True)
    ctl.start_dev_server("p2")
    ctl.delete_sandbox("p2", wait_for_completion=True)
    assert not (tmp_path / "start-dev").exists()
    assert ctl.get_instance_status("p2") is None


def test_snapshot_round_trip(controller, tmp_path):
    project = tmp_path / "app" / "game"
    (project / "src").mkdir(parents=True)
    (project / "package.json").write_text('{"name": "game"}')
    (project / "src" / "main.js").write_text("console.log('hi')")
    (project / "node_modules" / "dep").mkdir(parents=True)
    (project / "dist").mkdir()
    (project / "dist" / "bundle.js").write_text("built")

    blobs = FakeBlobStore()
    repo = SQLiteSnapshotRepo(db_path=tmp_path / "snap.db")
    manager = SnapshotManager(controller, blobs, repo, SnapshotConfig(probe_interval_sec=0))

    assert not manager.has_snapshots("p1")
    assert manager.restore_snapshot("p1") is False

    snapshot_id = manager.create_snapshot("p1", SnapshotType.AUTO_RESTART)
    row = repo.latest("p1")
    assert row.id == snapshot_id
    assert row.snapshot_type == "auto-restart"
    assert row.storage_key == f"project-snapshots/p1/{snapshot_id}.tar.gz"
    assert blobs.objects[row.storage_key][1] == "application/gzip"

    (project / "src" / "main.js").unlink()
    (project / "junk.txt").write_text("x")

    assert manager.restore_snapshot("p1") is True
    assert (project / "src" / "main.js").read_text() == "console.log('hi')"
    assert not (project / "junk.txt").exists()
    assert not (project / "dist").exists()
    assert not (project / "node_modules").exists()
    repo.close()


def test_corrupt_snapshot_is_rejected(controller, tmp_path):
    blobs = FakeBlobStore()
    repo = SQLiteSnapshotRepo(db_path=tmp_path / "snap.db")
    manager = SnapshotManager(controller, blobs, repo, SnapshotConfig(probe_interval_sec=0))
    project = tmp_path / "app" / "game"
    project.mkdir(parents=True)
    (project / "package.json").write_text("{}")

    manager.create_snapshot("p1")
    key = repo.latest("p1").storage_key
    blobs.objects[key] = (b"not a tarball", "application/gzip")

    with pytest.raises(SnapshotError, match="corrupt"):
        manager.restore_snapshot("p1")
    assert (project / "package.json").exists()
    repo.close()

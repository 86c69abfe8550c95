import json
from pathlib import Path

import pytest

from streamtest import main as cli_main
from streamtest.checkpoint.metadata import CheckpointMetadata, OperatorState, store_checkpoint_metadata
from streamtest.checkpoint.storage import FileStateHandle, FsCheckpointStorage
from streamtest.config import Settings, load_settings


def _checkpoint_root(tmp_path: Path) -> Path:
    root = tmp_path / "checkpoints" / "a1b2c3"
    storage = FsCheckpointStorage(root)
    for checkpoint_id in (8, 9, 10):
        metadata = CheckpointMetadata(
            checkpoint_id=checkpoint_id,
            operator_states=[OperatorState(operator_id="source", parallelism=1, max_parallelism=1)],
        )
        with storage.create_metadata_output_stream(checkpoint_id) as stream:
            store_checkpoint_metadata(metadata, stream)
    (root / "chk-11").mkdir()
    return tmp_path / "checkpoints"


def test_latest_checkpoint(tmp_path, capsys):
    root = _checkpoint_root(tmp_path)
    capsys.readouterr()
    cli_main.main(["latest-checkpoint", "--root", str(root)])
    output = json.loads(capsys.readouterr().out)
    assert output["checkpoint_id"] == 10
    assert output["path"].endswith("chk-10")


def test_latest_checkpoint_required_but_missing(tmp_path, capsys):
    cli_main.main(["latest-checkpoint", "--root", str(tmp_path)])
    assert json.loads(capsys.readouterr().out) is None
    with pytest.raises(SystemExit) as excinfo:
        cli_main.main(["latest-checkpoint", "--root", str(tmp_path), "--require"])
    assert "No completed checkpoint" in str(excinfo.value.code)


def test_list_checkpoints(tmp_path, capsys):
    root = _checkpoint_root(tmp_path)
    capsys.readouterr()
    cli_main.main(["list-checkpoints", "--root", str(root)])
    output = json.loads(capsys.readouterr().out)
    assert [item["checkpoint_id"] for item in output] == [8, 9, 10]


def test_inspect_metadata(tmp_path, capsys):
    root = _checkpoint_root(tmp_path)
    capsys.readouterr()
    pointer = str(root / "a1b2c3" / "chk-9")
    cli_main.main(["inspect-metadata", pointer])
    output = json.loads(capsys.readouterr().out)
    assert output["checkpoint_id"] == 9
    assert output["operators"][0]["operator_id"] == "source"

    with pytest.raises(SystemExit):
        cli_main.main(["inspect-metadata", str(root / "a1b2c3" / "chk-11")])


def test_inspect_metadata_unreadable_file(tmp_path, monkeypatch, capsys):
    root = _checkpoint_root(tmp_path)
    capsys.readouterr()

    def denied(self):
        raise PermissionError(13, "Permission denied", str(self.path))

    monkeypatch.setattr(FileStateHandle, "open_input_stream", denied)
    with pytest.raises(SystemExit) as excinfo:
        cli_main.main(["inspect-metadata", str(root / "a1b2c3" / "chk-9")])
    assert "Permission denied" in str(excinfo.value.code)
    assert capsys.readouterr().out == ""


def test_settings_default_root(tmp_path, monkeypatch, capsys):
    root = _checkpoint_root(tmp_path)
    capsys.readouterr()
    settings_file = tmp_path / "settings.toml"
    settings_file.write_text(f'[checkpoints]\nroot = "{root.as_posix()}"\n', encoding="utf-8")
    monkeypatch.setenv("STREAMTEST_SETTINGS", str(settings_file))
    cli_main.main(["latest-checkpoint"])
    assert json.loads(capsys.readouterr().out)["checkpoint_id"] == 10


def test_load_settings(tmp_path):
    assert load_settings(tmp_path / "missing.toml") == Settings()
    path = tmp_path / "settings.toml"
    path.write_text("[cluster]\nmax_workers = 2\n\n[harness]\ncancel_timeout_seconds = 1.5\n", encoding="utf-8")
    settings = load_settings(path)
    assert settings.cluster.max_workers == 2
    assert settings.harness.cancel_timeout_seconds == 1.5
    assert settings.harness.result_timeout_seconds is None
    path.write_text("[cluster]\nmax_workers = 0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)

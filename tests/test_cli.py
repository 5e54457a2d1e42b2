import json
from pathlib import Path

from typer.testing import CliRunner

from storymine.ui.cli import app

runner = CliRunner()


def test_extract_writes_report(tmp_path: Path) -> None:
    data_dir = tmp_path / "Demo_Data"
    data_dir.mkdir()
    (data_dir / "level0").write_bytes(b"\x00\x00The village is quiet tonight.\x00")
    out = tmp_path / "report.json"
    result = runner.invoke(app, ["extract", str(data_dir), "--output", str(out), "--format", "json"])
    assert result.exit_code == 0
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert "The village is quiet tonight." in [f["content"] for f in payload["fragments"]]


def test_default_output_path(tmp_path: Path) -> None:
    data_dir = tmp_path / "Demo_Data"
    data_dir.mkdir()
    (data_dir / "level0").write_bytes(b"A quiet line of dialogue.")
    result = runner.invoke(app, ["extract", str(data_dir), "--format", "txt", "--no-cjk", "-p", "1"])
    assert result.exit_code == 0
    assert (tmp_path / "Demo_Data_story.txt").exists()


def test_missing_input_exits_with_configuration_code(tmp_path: Path) -> None:
    result = runner.invoke(app, ["extract", str(tmp_path / "missing")])
    assert result.exit_code == 2


def test_bad_key_exits_with_configuration_code(tmp_path: Path) -> None:
    result = runner.invoke(app, ["extract", str(tmp_path), "--decrypt-key", "%%%"])
    assert result.exit_code == 2


def test_unknown_format_is_rejected(tmp_path: Path) -> None:
    result = runner.invoke(app, ["extract", str(tmp_path), "--format", "yaml"])
    assert result.exit_code == 2


def test_config_file_values_are_kept(tmp_path: Path) -> None:
    data_dir = tmp_path / "Demo_Data"
    data_dir.mkdir()
    (data_dir / "level0").write_bytes(b"\x00\x00ab\x00\x00\x00longer sentence here\x00")
    config_path = tmp_path / "storymine.json"
    config_path.write_text(json.dumps({"minTextLength": 10, "prioritizeCjkText": False}), encoding="utf-8")
    out = tmp_path / "report.json"
    result = runner.invoke(app, ["extract", str(data_dir), "--config", str(config_path), "--output", str(out)])
    assert result.exit_code == 0
    contents = [f["content"] for f in json.loads(out.read_text(encoding="utf-8"))["fragments"]]
    assert "longer sentence here" in contents
    assert "ab" not in contents


def test_command_line_overrides_config_file(tmp_path: Path) -> None:
    data_dir = tmp_path / "Demo_Data"
    data_dir.mkdir()
    (data_dir / "level0").write_bytes(b"\x00\x00ab\x00\x00\x00longer sentence here\x00")
    config_path = tmp_path / "storymine.json"
    config_path.write_text(json.dumps({"minTextLength": 10}), encoding="utf-8")
    out = tmp_path / "report.json"
    args = ["extract", str(data_dir), "--config", str(config_path), "--min-length", "2", "--output", str(out)]
    assert runner.invoke(app, args).exit_code == 0
    contents = [f["content"] for f in json.loads(out.read_text(encoding="utf-8"))["fragments"]]
    assert "ab" in contents


def test_malformed_config_file_exits_with_configuration_code(tmp_path: Path) -> None:
    config_path = tmp_path / "storymine.json"
    config_path.write_text("{not json", encoding="utf-8")
    result = runner.invoke(app, ["extract", str(tmp_path), "--config", str(config_path)])
    assert result.exit_code == 2

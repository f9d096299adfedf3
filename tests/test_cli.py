"""Tests for the command line interface."""

import io
import json
from pathlib import Path

import pytest

from mvx.cli.main import MvxCLI

from .conftest import JPEG_BYTES, PNG_BYTES, WAV_BYTES, FakeTools


@pytest.fixture
def cli(all_tools: FakeTools) -> MvxCLI:
    return MvxCLI(registry=all_tools.registry())


def test_single_conversion(cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = workdir / "photo.png"
    source.write_bytes(PNG_BYTES)

    exit_code = cli.run([str(source), str(workdir / "photo.jpg"), "--no-progress"])

    assert exit_code == 0
    assert (workdir / "photo.jpg").exists()
    assert "convert:" in capsys.readouterr().out


def test_json_result(cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = workdir / "photo.jpeg"
    source.write_bytes(JPEG_BYTES)

    exit_code = cli.run([str(source), str(workdir / "photo.jpg"), "--json"])

    data = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert data["status"] == "ok"
    assert data["strategy"] == "rename"
    assert data["bytes_written"] == len(JPEG_BYTES)
    assert data["backup"] is None


def test_plan_does_not_execute(cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = workdir / "input.wav"
    source.write_bytes(WAV_BYTES)

    exit_code = cli.run([str(source), str(workdir / "output.mp3"), "--plan"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Strategy: transcode" in out
    assert "libmp3lame" in out
    assert not (workdir / "output.mp3").exists()


def test_plan_json(cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = workdir / "photo.png"
    source.write_bytes(PNG_BYTES)

    cli.run([str(source), str(workdir / "photo.webp"), "--dry-run", "--json"])

    data = json.loads(capsys.readouterr().out)
    assert data["strategy"] == "convert"
    assert data["backend"] == "imagemagick"


@pytest.mark.parametrize(
    ("extra", "code", "kind"),
    [
        (["--overwrite", "--backup"], 2, "conflicting_options"),
        (["--image-quality", "500"], 2, "invalid_option_value"),
        (["--profile", "nope"], 2, "invalid_option_value"),
    ],
)
def test_option_errors(
    cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str], extra: list[str], code: int, kind: str
) -> None:
    source = workdir / "photo.png"
    source.write_bytes(PNG_BYTES)

    exit_code = cli.run([str(source), str(workdir / "photo.jpg"), "--json", *extra])

    assert exit_code == code
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "error"
    assert data["kind"] == kind
    assert not (workdir / "photo.jpg").exists()


def test_exit_codes_are_distinct(
    fake_tools: FakeTools, workdir: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cli = MvxCLI(registry=fake_tools.registry())  # nothing installed
    source = workdir / "photo.png"
    source.write_bytes(PNG_BYTES)
    (workdir / "taken.jpg").write_bytes(b"x")

    assert cli.run([str(source), str(workdir / "photo.jpg")]) == 3
    assert cli.run([str(source), str(workdir / "taken.jpg")]) == 4
    assert cli.run([str(source), str(workdir / "photo.wav")]) == 2
    assert cli.run([str(workdir / "missing.png"), str(workdir / "out.jpg")]) == 6
    assert "mvx: error:" in capsys.readouterr().err


def test_backend_failure_exit_code(
    cli: MvxCLI, workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("FAKE_EXIT", "2")
    source = workdir / "photo.png"
    source.write_bytes(PNG_BYTES)

    assert cli.run([str(source), str(workdir / "photo.jpg"), "--no-progress"]) == 5


def test_missing_destination_argument(cli: MvxCLI, workdir: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.run([str(workdir / "only-one.png")])
    assert exc_info.value.code == 2


def test_check_tools(fake_tools: FakeTools, capsys: pytest.CaptureFixture[str]) -> None:
    fake_tools.install_ffmpeg()
    cli = MvxCLI(registry=fake_tools.registry())

    exit_code = cli.run(["--check-tools"])

    out = capsys.readouterr().out
    assert exit_code == 3
    assert "ffmpeg" in out
    assert "missing" in out


def test_check_tools_all_present(cli: MvxCLI, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.run(["--check-tools", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert {entry["tool"] for entry in data} == {"ffmpeg", "ffprobe", "imagemagick", "libreoffice"}


def test_batch_mode(cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    src = workdir / "in"
    src.mkdir()
    (src / "a.png").write_bytes(PNG_BYTES)
    (src / "b.png").write_bytes(PNG_BYTES)
    out = workdir / "out"

    exit_code = cli.run([str(src), "--dest-dir", str(out), "--to-ext", "jpg", "--workers", "2", "--json"])

    data = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert data["succeeded"] == 2
    assert sorted(p.name for p in out.iterdir()) == ["a.jpg", "b.jpg"]


def test_batch_reads_stdin(
    cli: MvxCLI, workdir: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    (workdir / "a.png").write_bytes(PNG_BYTES)
    monkeypatch.setattr("sys.stdin", io.StringIO(f"{workdir / 'a.png'}\n"))

    exit_code = cli.run(["--stdin", "--dest-dir", str(workdir / "out"), "--plan"])

    assert exit_code == 0
    assert "Strategy: rename" in capsys.readouterr().out


def test_batch_failure_table(cli: MvxCLI, workdir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (workdir / "a.png").write_bytes(PNG_BYTES)
    out = workdir / "out"
    out.mkdir()
    (out / "a.jpg").write_bytes(b"taken")

    exit_code = cli.run([str(workdir / "a.png"), "--dest-dir", str(out), "--to-ext", "jpg", "--no-progress"])

    printed = capsys.readouterr().out
    assert exit_code == 1
    assert "CONVERSION FAILURES" in printed
    assert "a.png" in printed


def test_batch_requires_dest_dir(cli: MvxCLI, workdir: Path) -> None:
    (workdir / "a.png").write_bytes(PNG_BYTES)
    assert cli.run(["--input", str(workdir / "a.png")]) == 2


def test_config_profile_from_file(
    cli: MvxCLI, workdir: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config = tmp_path / "mvx.yaml"
    config.write_text("profiles:\n  small:\n    image_quality: 40\n")
    source = workdir / "photo.png"
    source.write_bytes(PNG_BYTES)

    cli.run([str(source), str(workdir / "photo.jpg"), "--config", str(config), "--profile", "small", "--plan"])

    assert "Image quality: 40" in capsys.readouterr().out

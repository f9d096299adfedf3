"""Shared fixtures: fake backend executables and sample files."""

from __future__ import annotations

import json
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from mvx.core.tools import ToolRegistry

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64
PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<>>\nendobj\n"
WAV_BYTES = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 64
ZIP_BYTES = b"PK\x03\x04\x14\x00\x00\x00\x08\x00" + b"\x00" * 64

FAKE_FFMPEG = """
import json, os, sys, time
args = sys.argv[1:]
with open({log!r}, "a") as log:
    log.write(json.dumps(args) + "\\n")
if os.environ.get("FAKE_SLEEP"):
    time.sleep(float(os.environ["FAKE_SLEEP"]))
if os.environ.get("FAKE_EXIT"):
    sys.stderr.write("Conversion failed!\\n")
    sys.exit(int(os.environ["FAKE_EXIT"]))
output = args[-1]
if not os.environ.get("FAKE_EMPTY"):
    with open(output, "wb") as f:
        f.write(b"converted-by-fake-ffmpeg")
for us in (500000, 1000000, 2000000):
    print("out_time_us=%d" % us)
    print("progress=continue")
print("garbage line")
print("progress=end")
sys.stdout.flush()
"""

FAKE_MAGICK = """
import json, os, sys
args = sys.argv[1:]
with open({log!r}, "a") as log:
    log.write(json.dumps(args) + "\\n")
if os.environ.get("FAKE_EXIT"):
    sys.exit(int(os.environ["FAKE_EXIT"]))
with open(args[-1], "wb") as f:
    f.write(b"converted-by-fake-magick")
"""

FAKE_SOFFICE = """
import json, os, sys
args = sys.argv[1:]
with open({log!r}, "a") as log:
    log.write(json.dumps(args) + "\\n")
outdir = args[args.index("--outdir") + 1]
ext = args[args.index("--convert-to") + 1]
source = args[-1]
stem = os.path.splitext(os.path.basename(source))[0]
with open(os.path.join(outdir, stem + "." + ext), "wb") as f:
    f.write(b"converted-by-fake-soffice")
print("convert " + source + " -> " + ext)
"""

FAKE_FFPROBE = """
import os, sys
probe = {probe!r}
if not os.path.exists(probe):
    sys.stderr.write("probe failed\\n")
    sys.exit(1)
with open(probe) as f:
    sys.stdout.write(f.read())
"""


class FakeTools:
    """Fake backends installed into a private bin directory."""

    def __init__(self, root: Path) -> None:
        self.bin_dir = root / "bin"
        self.bin_dir.mkdir()
        self.log_dir = root / "logs"
        self.log_dir.mkdir()
        self.probe_file = root / "probe.json"

    def install(self, name: str, body: str) -> Path:
        script = self.bin_dir / name
        script.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    def install_ffmpeg(self) -> Path:
        return self.install("ffmpeg", FAKE_FFMPEG.format(log=str(self.log_dir / "ffmpeg.log")))

    def install_ffprobe(self) -> Path:
        return self.install("ffprobe", FAKE_FFPROBE.format(probe=str(self.probe_file)))

    def install_magick(self) -> Path:
        return self.install("magick", FAKE_MAGICK.format(log=str(self.log_dir / "magick.log")))

    def install_soffice(self) -> Path:
        return self.install("soffice", FAKE_SOFFICE.format(log=str(self.log_dir / "soffice.log")))

    def install_all(self) -> None:
        self.install_ffmpeg()
        self.install_ffprobe()
        self.install_magick()
        self.install_soffice()

    def set_probe(self, streams: list[tuple[str, str]], duration: float | None = 2.0) -> None:
        data: dict[str, object] = {
            "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
            "streams": [{"codec_type": kind, "codec_name": codec} for kind, codec in streams],
        }
        if duration is not None:
            data["format"]["duration"] = str(duration)  # type: ignore[index]
        self.probe_file.write_text(json.dumps(data))

    def calls(self, name: str) -> list[list[str]]:
        log = self.log_dir / f"{name}.log"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text().splitlines()]

    def which(self, name: str) -> str | None:
        candidate = self.bin_dir / name
        return str(candidate) if candidate.exists() else None

    def registry(self) -> ToolRegistry:
        return ToolRegistry(which=self.which)


@pytest.fixture
def fake_tools(tmp_path: Path) -> FakeTools:
    """Fake backends with nothing installed yet."""
    return FakeTools(tmp_path)


@pytest.fixture
def all_tools(fake_tools: FakeTools) -> FakeTools:
    """Every fake backend installed."""
    fake_tools.install_all()
    return fake_tools


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Directory for source and destination files."""
    d = tmp_path / "work"
    d.mkdir()
    return d


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a user's real config file out of the tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in ("FAKE_EXIT", "FAKE_EMPTY", "FAKE_SLEEP"):
        monkeypatch.delenv(var, raising=False)

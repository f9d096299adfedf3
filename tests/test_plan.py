"""Tests for strategy selection, parameter resolution and plan rendering."""

import json
from pathlib import Path

import pytest

from mvx.config.settings import ContainerCompatibility
from mvx.core.base import (
    ConflictingOptions,
    InvalidOptionValue,
    MediaMode,
    Strategy,
    UnsupportedConversion,
)
from mvx.core.detect import UNKNOWN, DetectedType
from mvx.core.ffmpeg import MediaInfo, StreamInfo
from mvx.core.formats import MediaKind
from mvx.core.plan import ConversionOptions, PlanBuilder, render_plan, render_plan_json

JPEG = DetectedType("image/jpeg", MediaKind.IMAGE, "jpg")
PNG = DetectedType("image/png", MediaKind.IMAGE, "png")
GIF = DetectedType("image/gif", MediaKind.IMAGE, "gif")
MOV = DetectedType("video/quicktime", MediaKind.VIDEO, "mov")
WAV = DetectedType("audio/x-wav", MediaKind.AUDIO, "wav")
PDF = DetectedType("application/pdf", MediaKind.DOCUMENT, "pdf")
DOCX = DetectedType(
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document", MediaKind.DOCUMENT, "docx"
)
CSV = DetectedType("text/csv", MediaKind.DOCUMENT, "csv")

H264_AAC = MediaInfo("mov,mp4", (StreamInfo("video", "h264"), StreamInfo("audio", "aac")), 10.0)
PRORES_PCM = MediaInfo("mov,mp4", (StreamInfo("video", "prores"), StreamInfo("audio", "pcm_s16le")), 10.0)


@pytest.fixture
def builder() -> PlanBuilder:
    return PlanBuilder()


def build(builder: PlanBuilder, src: str, dst: str, detected: DetectedType, info=None, **flags):
    return builder.build(Path(src), Path(dst), detected, info, ConversionOptions(**flags))


class TestStrategySelection:
    """Decision order: rename, media pair, document, image, failure."""

    def test_alias_extension_is_rename(self, builder: PlanBuilder) -> None:
        plan = build(builder, "photo.jpeg", "photo.jpg", JPEG)
        assert plan.strategy == Strategy.RENAME
        assert plan.backend is None
        assert plan.command_preview is None

    def test_rename_ignores_source_extension(self, builder: PlanBuilder) -> None:
        """A PNG misnamed .jpg renames to .png."""
        plan = build(builder, "misnamed.jpg", "fixed.png", PNG)
        assert plan.strategy == Strategy.RENAME

    def test_unknown_type_same_extension_is_rename(self, builder: PlanBuilder) -> None:
        assert build(builder, "a.bin", "b.bin", UNKNOWN).strategy == Strategy.RENAME

    def test_no_extensions_is_rename(self, builder: PlanBuilder) -> None:
        assert build(builder, "README", "copy", UNKNOWN).strategy == Strategy.RENAME

    def test_unknown_type_is_never_transcoded(self, builder: PlanBuilder) -> None:
        with pytest.raises(UnsupportedConversion):
            build(builder, "clip.mov", "clip.mp4", UNKNOWN)

    def test_unknown_type_with_document_extension_converts(self, builder: PlanBuilder) -> None:
        plan = build(builder, "legacy.doc", "legacy.pdf", UNKNOWN)
        assert plan.strategy == Strategy.CONVERT
        assert plan.backend is not None
        assert plan.backend.tool == "libreoffice"

    def test_compatible_streams_remux(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC)
        assert plan.strategy == Strategy.REMUX
        assert plan.parameters.stream_copy
        assert "-c copy" in plan.command_preview

    def test_incompatible_streams_transcode(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.webm", MOV, H264_AAC)
        assert plan.strategy == Strategy.TRANSCODE
        assert any("not copyable" in note for note in plan.notes)

    def test_missing_media_info_transcodes(self, builder: PlanBuilder) -> None:
        """Never remux on a guess."""
        plan = build(builder, "clip.mov", "clip.mp4", MOV, None)
        assert plan.strategy == Strategy.TRANSCODE
        assert any("probe unavailable" in note for note in plan.notes)

    def test_unknown_codec_transcodes(self, builder: PlanBuilder) -> None:
        info = MediaInfo("mov", (StreamInfo("video", None),), 1.0)
        assert build(builder, "clip.mov", "clip.mp4", MOV, info).strategy == Strategy.TRANSCODE

    def test_data_streams_do_not_block_remux(self, builder: PlanBuilder) -> None:
        info = MediaInfo("mov", (*H264_AAC.streams, StreamInfo("other", "tmcd")), 1.0)
        assert build(builder, "clip.mov", "clip.mp4", MOV, info).strategy == Strategy.REMUX

    def test_mkv_accepts_any_codec(self, builder: PlanBuilder) -> None:
        assert build(builder, "clip.mov", "clip.mkv", MOV, PRORES_PCM).strategy == Strategy.REMUX

    def test_forced_transcode(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC, transcode=True)
        assert plan.strategy == Strategy.TRANSCODE
        assert plan.media_mode == MediaMode.TRANSCODE

    def test_forced_stream_copy_without_probe(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, None, stream_copy=True)
        assert plan.strategy == Strategy.REMUX

    def test_profile_media_mode_applies(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC, default_media_mode=MediaMode.TRANSCODE)
        assert plan.strategy == Strategy.TRANSCODE

    def test_compatibility_table_is_configurable(self) -> None:
        builder = PlanBuilder(compatibility={"mp4": ContainerCompatibility(video=frozenset({"prores"}))})
        info = MediaInfo("mov", (StreamInfo("video", "prores"),), 1.0)
        assert build(builder, "clip.mov", "clip.mp4", MOV, info).strategy == Strategy.REMUX

    def test_audio_only_output_without_table_transcodes(self, builder: PlanBuilder) -> None:
        info = MediaInfo("wav", (StreamInfo("audio", "pcm_s16le"),), 3.0)
        assert build(builder, "input.wav", "output.mp3", WAV, info).strategy == Strategy.TRANSCODE

    def test_office_to_pdf_converts(self, builder: PlanBuilder) -> None:
        plan = build(builder, "report.docx", "report.pdf", DOCX)
        assert plan.strategy == Strategy.CONVERT
        assert plan.backend is not None
        assert plan.backend.tool == "libreoffice"
        assert plan.parameters.target_format == "pdf"

    def test_office_within_family_converts(self, builder: PlanBuilder) -> None:
        assert build(builder, "table.csv", "table.xlsx", CSV).strategy == Strategy.CONVERT

    def test_office_across_families_is_unsupported(self, builder: PlanBuilder) -> None:
        with pytest.raises(UnsupportedConversion):
            build(builder, "table.csv", "slides.pptx", CSV)

    def test_image_conversion(self, builder: PlanBuilder) -> None:
        plan = build(builder, "photo.png", "photo.webp", PNG)
        assert plan.strategy == Strategy.CONVERT
        assert plan.backend is not None
        assert plan.backend.tool == "imagemagick"
        assert plan.parameters.image_quality == 90

    def test_pdf_first_page_to_image(self, builder: PlanBuilder) -> None:
        plan = build(builder, "doc.pdf", "page.png", PDF)
        assert plan.strategy == Strategy.CONVERT
        assert plan.parameters.page == 0
        assert plan.parameters.density == 150
        assert "doc.pdf[0]" in plan.command_preview

    def test_gif_first_frame(self, builder: PlanBuilder) -> None:
        plan = build(builder, "anim.gif", "still.jpg", GIF)
        assert plan.parameters.page == 0

    def test_image_to_pdf_uses_image_backend(self, builder: PlanBuilder) -> None:
        plan = build(builder, "scan.jpg", "scan.pdf", JPEG)
        assert plan.strategy == Strategy.CONVERT
        assert plan.backend is not None
        assert plan.backend.tool == "imagemagick"

    def test_audio_to_image_is_unsupported(self, builder: PlanBuilder) -> None:
        with pytest.raises(UnsupportedConversion):
            build(builder, "input.wav", "output.png", WAV)

    def test_unknown_destination_extension_is_unsupported(self, builder: PlanBuilder) -> None:
        with pytest.raises(UnsupportedConversion):
            build(builder, "photo.png", "photo.xyz", PNG)


class TestParameters:
    """Flags win, defaults fill gaps, irrelevant flags are dropped."""

    def test_wav_to_mp3_uses_default_encoder(self, builder: PlanBuilder) -> None:
        plan = build(builder, "input.wav", "output.mp3", WAV)
        assert plan.strategy == Strategy.TRANSCODE
        assert plan.parameters.audio_codec == "libmp3lame"
        assert plan.parameters.audio_bitrate == "192k"
        assert "-vn" in plan.command_preview

    def test_explicit_flags_win(self, builder: PlanBuilder) -> None:
        plan = build(builder, "input.wav", "output.mp3", WAV, audio_bitrate="320k")
        assert plan.parameters.audio_bitrate == "320k"
        assert "-b:a 320k" in plan.command_preview

    def test_video_flags_dropped_for_audio_output(self, builder: PlanBuilder) -> None:
        plan = build(builder, "input.wav", "output.mp3", WAV, video_bitrate="2M", preset="slow")
        assert "-b:v" not in plan.command_preview
        assert "-preset" not in plan.command_preview
        assert "video bitrate ignored for audio-only output" in plan.notes

    def test_codec_flags_dropped_for_stream_copy(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC, video_codec="libx265")
        assert plan.strategy == Strategy.REMUX
        assert "libx265" not in plan.command_preview

    def test_preset_only_for_x264_family(self, builder: PlanBuilder) -> None:
        x264 = build(builder, "clip.mov", "clip.mp4", MOV, None, preset="slow")
        vp9 = build(builder, "clip.mov", "clip.webm", MOV, None, preset="slow")
        assert "-preset slow" in x264.command_preview
        assert "-preset" not in vp9.command_preview

    def test_image_quality_flag(self, builder: PlanBuilder) -> None:
        plan = build(builder, "photo.png", "photo.jpg", PNG, image_quality="75")
        assert plan.parameters.image_quality == 75
        assert "-quality 75" in plan.command_preview

    def test_ffmpeg_transcode_arguments(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, None, video_bitrate="2500k")
        argv = plan.backend.command(Path("/out/tmp.mp4"))
        assert argv[:8] == ["ffmpeg", "-nostdin", "-y", "-hide_banner", "-nostats", "-loglevel", "error", "-i"]
        assert argv[argv.index("-c:v") + 1] == "libx264"
        assert argv[argv.index("-b:v") + 1] == "2500k"
        assert argv[-3:] == ["-progress", "pipe:1", "/out/tmp.mp4"]

    def test_document_arguments_use_work_dir(self, builder: PlanBuilder) -> None:
        plan = build(builder, "report.docx", "report.pdf", DOCX)
        argv = plan.backend.command(Path("/out/.mvx-1.pdf"), Path("/out/.mvx-work"))
        assert argv[argv.index("--outdir") + 1] == "/out/.mvx-work"
        assert argv[argv.index("--convert-to") + 1] == "pdf"
        assert any(arg.startswith("-env:UserInstallation=file://") for arg in argv)


class TestValidation:
    @pytest.mark.parametrize(
        "flags",
        [
            {"stream_copy": True, "transcode": True},
            {"overwrite": True, "backup": True},
        ],
    )
    def test_conflicting_flags(self, builder: PlanBuilder, flags: dict) -> None:
        with pytest.raises(ConflictingOptions):
            build(builder, "photo.png", "photo.jpg", PNG, **flags)

    @pytest.mark.parametrize(
        "flags",
        [
            {"image_quality": 0},
            {"image_quality": 101},
            {"image_quality": "high"},
            {"video_bitrate": "fast"},
            {"audio_bitrate": "128kbps"},
            {"preset": "warp"},
            {"audio_codec": "  "},
        ],
    )
    def test_invalid_values(self, builder: PlanBuilder, flags: dict) -> None:
        with pytest.raises(InvalidOptionValue):
            build(builder, "photo.png", "photo.jpg", PNG, **flags)

    def test_same_source_and_destination(self, builder: PlanBuilder) -> None:
        with pytest.raises(InvalidOptionValue):
            build(builder, "photo.png", "./photo.png", PNG)

    def test_preset_is_normalized(self, builder: PlanBuilder) -> None:
        plan = build(builder, "clip.mov", "clip.mp4", MOV, None, preset="SLOW")
        assert plan.parameters.preset == "slow"


class TestRendering:
    def test_plans_are_deterministic(self, builder: PlanBuilder) -> None:
        first = build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC, backup=True)
        second = build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC, backup=True)
        assert first == second
        assert render_plan(first) == render_plan(second)

    def test_text_preview_fields(self, builder: PlanBuilder) -> None:
        text = render_plan(build(builder, "input.wav", "output.mp3", WAV, overwrite=True))
        assert "Strategy: transcode" in text
        assert "Detected: audio/x-wav" in text
        assert "Backend: ffmpeg" in text
        assert "Audio codec: libmp3lame" in text
        assert "Overwrite: yes" in text
        assert "Command preview: ffmpeg" in text

    def test_rename_preview_has_no_command(self, builder: PlanBuilder) -> None:
        text = render_plan(build(builder, "photo.jpeg", "photo.jpg", JPEG))
        assert "no external process" in text

    def test_json_preview(self, builder: PlanBuilder) -> None:
        data = json.loads(render_plan_json(build(builder, "clip.mov", "clip.mp4", MOV, H264_AAC)))
        assert data["strategy"] == "remux"
        assert data["backend"] == "ffmpeg"
        assert data["detected_mime"] == "video/quicktime"
        assert data["media_info"]["streams"][0]["codec"] == "h264"
        assert data["command_preview"].startswith("ffmpeg ")

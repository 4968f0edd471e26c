"""Tests for engine argument planning."""
import pytest

from mediabatch.conversion.models import BatchConfiguration, ConversionItem, VideoJobConfiguration
from mediabatch.conversion.planner import (
    METADATA_TAGS,
    PlanError,
    jpeg_quality,
    output_filename,
    plan_image,
    plan_video,
    sanitize_stem,
    webp_quality,
)


def make_item(width=1920, height=1080, filename="photo.png"):
    return ConversionItem("abc123", filename, b"data", width, height)


def test_jpeg_quality_bounds():
    assert jpeg_quality(1) == 31
    assert jpeg_quality(100) == 2


def test_jpeg_quality_monotonic_and_in_range():
    values = [jpeg_quality(q) for q in range(1, 101)]
    assert all(2 <= v <= 31 for v in values)
    assert all(a >= b for a, b in zip(values, values[1:]))


def test_jpeg_quality_midpoint():
    # floor(31 - 49 * 29 / 99) = floor(16.64...)
    assert jpeg_quality(50) == 16


def test_webp_quality_is_identity():
    assert [webp_quality(q) for q in range(1, 101)] == list(range(1, 101))


def test_plan_image_unchanged_png():
    args = plan_image(make_item(), BatchConfiguration("png", 80), "input_abc123", "output_abc123.png")
    assert args == ["-i", "input_abc123", "output_abc123.png"]


def test_plan_image_scale_uses_target_dimensions():
    item = make_item()
    item.target_width, item.target_height = 960, 540
    args = plan_image(item, BatchConfiguration("png", 80), "in", "out.png")
    assert args == ["-i", "in", "-vf", "scale=960:540", "out.png"]


def test_plan_image_jpeg_quality():
    args = plan_image(make_item(), BatchConfiguration("jpg", 100), "in", "out.jpg")
    assert args == ["-i", "in", "-q:v", "2", "out.jpg"]


def test_plan_image_webp_quality():
    args = plan_image(make_item(), BatchConfiguration("webp", 75), "in", "out.webp")
    assert args == ["-i", "in", "-quality", "75", "out.webp"]


@pytest.mark.parametrize("fmt", ["png", "gif", "bmp", "tiff", "ico"])
def test_plan_image_other_formats_have_no_quality(fmt):
    args = plan_image(make_item(), BatchConfiguration(fmt, 10), "in", f"out.{fmt}")
    assert "-q:v" not in args
    assert "-quality" not in args
    assert args[-1] == f"out.{fmt}"


def test_plan_image_metadata_on_every_tag():
    item = make_item()
    item.keyword = "Summer Sale!!"
    args = plan_image(item, BatchConfiguration("webp", 90), "in", "out.webp")
    pairs = [args[i + 1] for i, a in enumerate(args) if a == "-metadata"]
    assert pairs == [f"{tag}=Summer Sale!!" for tag in METADATA_TAGS]
    assert "ICRD=Summer Sale!!" in pairs
    assert args[0:2] == ["-i", "in"]
    assert args[-1] == "out.webp"


def test_plan_image_blank_keyword_adds_no_metadata():
    item = make_item()
    item.keyword = "   "
    assert "-metadata" not in plan_image(item, BatchConfiguration("png"), "in", "out.png")


def test_sanitize_stem():
    assert sanitize_stem("Summer Sale!!") == "Summer-Sale--"
    assert sanitize_stem("ok_name-1") == "ok_name-1"


def test_output_filename_from_keyword():
    item = make_item()
    item.keyword = "  Summer Sale!!  "
    assert output_filename(item, "jpg") == "Summer-Sale--.jpg"


def test_output_filename_from_source_stem():
    item = make_item(filename="holiday.photo.jpeg")
    assert output_filename(item, "webp") == "holiday.photo.webp"


def test_plan_video_original_default_codec_mp4():
    args = plan_video(make_item(), VideoJobConfiguration("mp4", "original", "libx264"), "input", "output.mp4")
    assert args == ["-i", "input", "-c:v", "libx264", "-preset", "fast", "output.mp4"]


def test_plan_video_preset_fixes_height():
    args = plan_video(make_item(), VideoJobConfiguration("webm", "720p", "libvpx-vp9"), "input", "output.webm")
    assert args == ["-i", "input", "-vf", "scale=-2:720", "-c:v", "libvpx-vp9", "output.webm"]


@pytest.mark.parametrize(
    "preset,height",
    [("4k", 2160), ("1440p", 1440), ("1080p", 1080), ("480p", 480), ("360p", 360)],
)
def test_plan_video_presets(preset, height):
    args = plan_video(make_item(), VideoJobConfiguration("mkv", preset, "libx265"), "input", "output.mkv")
    assert args[args.index("-vf") + 1] == f"scale=-2:{height}"


def test_plan_video_custom_even_rounding():
    item = make_item()
    item.target_width, item.target_height = 1001, 563
    args = plan_video(item, VideoJobConfiguration("mp4", "custom", "libx264"), "input", "output.mp4")
    assert args[args.index("-vf") + 1] == "scale=1000:562"


def test_plan_video_preset_fast_only_for_x264_mp4():
    args = plan_video(make_item(), VideoJobConfiguration("mkv", "original", "libx264"), "input", "output.mkv")
    assert "-preset" not in args
    args = plan_video(make_item(), VideoJobConfiguration("mp4", "original", "libx265"), "input", "output.mp4")
    assert "-preset" not in args


def test_plan_video_stream_copy():
    args = plan_video(make_item(), VideoJobConfiguration("mkv", "original", "copy"), "input", "output.mkv")
    assert args == ["-i", "input", "-c:v", "copy", "output.mkv"]


def test_plan_video_stream_copy_with_scale_rejected():
    with pytest.raises(PlanError):
        plan_video(make_item(), VideoJobConfiguration("mp4", "720p", "copy"), "input", "output.mp4")


def test_configuration_validation():
    with pytest.raises(ValueError):
        BatchConfiguration("svg", 50)
    with pytest.raises(ValueError):
        BatchConfiguration("png", 0)
    with pytest.raises(ValueError):
        BatchConfiguration("png", 101)
    with pytest.raises(ValueError):
        VideoJobConfiguration("mp3")
    with pytest.raises(ValueError):
        VideoJobConfiguration("mp4", "8k")
    with pytest.raises(ValueError):
        VideoJobConfiguration("mp4", "original", "h264_nvenc")

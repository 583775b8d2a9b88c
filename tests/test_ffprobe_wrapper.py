import sys
import os
import json
import pytest
from unittest.mock import MagicMock, patch

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from utils.ffprobe_wrapper import FFprobeWrapper, parse_probe_data
from errors import ProbeError

PROBE_DATA = {
    "format": {
        "duration": "120.500000",
        "bit_rate": "5000000",
        "format_name": "matroska,webm",
        "format_long_name": "Matroska / WebM",
        "size": "2097152",
    },
    "streams": [
        {"index": 0, "codec_type": "video", "codec_name": "H264", "width": 1920, "height": 1080,
         "avg_frame_rate": "24000/1001", "disposition": {"default": 1, "forced": 0}},
        {"index": 1, "codec_type": "audio", "codec_name": "ac3", "channels": 6, "sample_rate": "48000",
         "tags": {"LANGUAGE": "eng"}, "disposition": {"default": "1", "forced": "0"}},
        {"index": 2, "codec_type": "subtitle", "codec_name": "subrip",
         "tags": {"language": " fra "}, "disposition": {"default": False, "forced": True}},
        {"index": 3, "codec_type": "attachment", "codec_name": "ttf",
         "tags": {"filename": "font.ttf", "mimetype": "application/x-truetype-font"}},
        {"index": 4, "codec_type": "data"},
    ],
}


def test_parse_tracks():
    info = parse_probe_data(PROBE_DATA, "movie.mkv", input_index=1)

    assert info.duration_seconds == 120.5
    assert info.bitrate == 5000000
    assert info.container_format == "Matroska / WebM"
    assert info.size_mb == 2.0
    assert [t.key for t in info.tracks] == [(1, 0), (1, 1), (1, 2), (1, 3), (1, 4)]

    video, audio, subs, attachment, data = info.tracks
    assert video.codec == "h264"
    assert video.is_default and not video.is_forced
    assert video.label == "[1:0] VIDEO - h264 1920x1080 24000/1001"

    assert audio.language == "eng"
    assert audio.is_default
    assert audio.label == "[1:1] AUDIO - ac3 (6 ch) 48000 Hz [eng]"

    assert subs.language == "fra"
    assert subs.is_forced and not subs.is_default

    assert attachment.label == "[1:3] ATTACHMENT - ttf (font.ttf)"
    assert data.type == "unknown"
    assert data.codec == "unknown"


def test_parse_rejects_wrong_structure():
    with pytest.raises(ProbeError):
        parse_probe_data({"streams": "nope"}, "movie.mkv")


def make_wrapper():
    with patch("utils.ffprobe_wrapper.resolve_tool", return_value="/usr/bin/ffprobe"):
        return FFprobeWrapper()


def test_probe_runs_ffprobe(tmp_path):
    media = tmp_path / "movie.mkv"
    media.write_bytes(b"\x1a\x45\xdf\xa3")
    completed = MagicMock(returncode=0, stdout=json.dumps(PROBE_DATA), stderr="")

    wrapper = make_wrapper()
    with patch("utils.ffprobe_wrapper.subprocess.run", return_value=completed) as run:
        info = wrapper.probe(str(media))

    cmd = run.call_args[0][0]
    assert cmd[0] == "/usr/bin/ffprobe"
    assert "-show_streams" in cmd and "-show_format" in cmd
    assert cmd[-1] == str(media)
    assert len(info.tracks) == 5


def test_probe_failures_raise(tmp_path):
    media = tmp_path / "movie.mkv"
    media.write_bytes(b"")
    wrapper = make_wrapper()

    with pytest.raises(ProbeError):
        wrapper.probe(str(tmp_path / "missing.mkv"))

    with patch("utils.ffprobe_wrapper.subprocess.run",
               return_value=MagicMock(returncode=1, stdout="", stderr="Invalid data")):
        with pytest.raises(ProbeError):
            wrapper.probe(str(media))

    with patch("utils.ffprobe_wrapper.subprocess.run",
               return_value=MagicMock(returncode=0, stdout="not json", stderr="")):
        with pytest.raises(ProbeError):
            wrapper.probe(str(media))

    with patch("utils.ffprobe_wrapper.subprocess.run",
               return_value=MagicMock(returncode=0, stdout="[]", stderr="")):
        with pytest.raises(ProbeError):
            wrapper.probe(str(media))


def test_get_duration_never_raises(tmp_path):
    wrapper = make_wrapper()
    assert wrapper.get_duration(str(tmp_path / "missing.mkv")) == 0.0

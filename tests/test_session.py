import sys
import os
import pytest
from unittest.mock import MagicMock

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from models.track import MediaInfo, TrackDescriptor
from session import RemuxSession
from errors import InputValidationError, ProbeError


def make_prober(files):
    """files: path -> list of (type, codec) tuples."""
    def probe(path, input_index=0):
        if path not in files:
            raise ProbeError(f"ffprobe failed for {path}")
        tracks = [TrackDescriptor(input_index=input_index, stream_index=i, type=t, codec=c)
                  for i, (t, c) in enumerate(files[path])]
        return MediaInfo(path=path, duration_seconds=60.0, tracks=tracks)

    prober = MagicMock()
    prober.probe.side_effect = probe
    return prober


@pytest.fixture
def media(tmp_path):
    movie = tmp_path / "movie.mkv"
    extra = tmp_path / "extra.mka"
    movie.write_bytes(b"")
    extra.write_bytes(b"")
    files = {
        str(movie): [("video", "h264"), ("audio", "flac")],
        str(extra): [("audio", "aac")],
    }
    return str(movie), str(extra), make_prober(files)


def test_end_to_end_h264_flac_into_mp4(media):
    movie, _, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)

    plan = session.prepare_remux("mp4")

    assert [t.key for t in plan.accepted] == [(0, 0)]
    assert [t.key for t in plan.rejected] == [(0, 1)]
    assert plan.rejected[0].reject_reason == "codec not supported in MP4"
    assert plan.output_path == os.path.join(os.path.dirname(movie), "movie_remux.mp4")
    assert plan.arguments == ["-i", movie, "-map", "0:0", "-c", "copy", plan.output_path]
    assert plan.report[0] == "=== Remux Plan ==="
    assert " - [0:1] AUDIO - flac  (excluded: codec not supported in MP4)" in plan.report
    assert plan.total_duration == 60.0


def test_external_input_and_options(media):
    movie, extra, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)
    session.add_external(extra)

    assert session.input_files == [movie, extra]
    assert [t.key for t in session.tracks] == [(0, 0), (0, 1), (1, 0)]

    before = session.find_track((1, 0))
    updated = session.apply_options([(1, 0)], language="en", is_default=True, delay_ms=300)

    assert updated[0].language == "eng"
    assert updated[0].is_default
    assert updated[0].delay_ms == 300
    # Original descriptor is left alone
    assert before.language == "" and before.delay_ms == 0

    plan = session.prepare_remux("mkv", output_dir="out")
    args = plan.arguments
    assert args[:8] == ["-i", movie, "-i", extra, "-itsoffset", "0.3", "-i", extra]
    assert "2:0" in args
    assert args[args.index("-metadata:s:a:1") + 1] == "language=eng"
    assert args[args.index("-disposition:a:1") + 1] == "default"
    assert args[-1] == os.path.join("out", "movie_remux.mkv")


def test_apply_options_keeps_language_when_blank(media):
    movie, _, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)
    session.apply_options([(0, 1)], language="ja")
    session.apply_options([(0, 1)], language="", is_forced=True)

    track = session.find_track((0, 1))
    assert track.language == "jpn"
    assert track.is_forced


def test_apply_options_needs_selection(media):
    movie, _, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)

    with pytest.raises(InputValidationError):
        session.apply_options([], language="en")
    with pytest.raises(InputValidationError):
        session.apply_options([(5, 5)], language="en")


def test_duplicate_external_skipped(media):
    movie, extra, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)

    assert session.add_external(extra) is not None
    assert session.add_external(extra) is None
    assert session.add_external(movie) is None
    assert len(session.input_files) == 2


def test_add_files_primary_then_external(media, tmp_path):
    movie, extra, prober = media
    session = RemuxSession(prober)

    added = session.add_files([movie, str(tmp_path / "gone.mkv"), extra, movie])

    assert added == 2
    assert session.input_files == [movie, extra]


def test_reload_primary_clears_inputs(media):
    movie, extra, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)
    session.add_external(extra)

    session.load_primary(extra)
    assert session.input_files == [extra]
    assert [t.key for t in session.tracks] == [(0, 0)]


def test_failed_probe_keeps_previous_state(media, tmp_path):
    movie, _, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)

    with pytest.raises(ProbeError):
        session.load_primary(str(tmp_path / "broken.mkv"))
    assert session.input_files == [movie]


def test_validation_errors(media, tmp_path):
    movie, _, prober = media
    session = RemuxSession(prober)

    with pytest.raises(InputValidationError):
        session.prepare_remux("mp4")

    session.load_primary(movie)
    with pytest.raises(InputValidationError):
        session.prepare_remux("")
    with pytest.raises(InputValidationError):
        session.prepare_remux("avi")

    session.set_included([(0, 0), (0, 1)], False)
    with pytest.raises(InputValidationError):
        session.prepare_remux("mkv")


def test_all_rejected_carries_rejects(media):
    movie, _, prober = media
    session = RemuxSession(prober)
    session.load_primary(movie)
    session.set_included([(0, 0)], False)

    with pytest.raises(InputValidationError) as excinfo:
        session.prepare_remux("mp4")
    assert [t.key for t in excinfo.value.rejected] == [(0, 1)]

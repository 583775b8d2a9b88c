import sys
import os
import io
import math
import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from ffmpeg_runner import (
    FFmpegRunner,
    compute_percentage,
    is_progress_line,
    parse_out_time,
    parse_progress_line,
)
from models.progress import EventKind, RunState


def fake_process(stdout_text: str, stderr_text: str, returncode: int = 0):
    process = MagicMock()
    process.stdout = io.StringIO(stdout_text)
    process.stderr = io.StringIO(stderr_text)
    process.wait.return_value = returncode
    process.poll.return_value = returncode
    return process


def test_out_time_ms_line():
    assert parse_progress_line("out_time_ms=5000000", 10.0) == 50.0


def test_out_time_line():
    assert parse_progress_line("out_time=00:00:07.500000", 10.0) == 75.0


def test_progress_end_is_always_100():
    assert parse_progress_line("progress=end", 10.0) == 100.0
    assert parse_progress_line("progress=end", 0.0) == 100.0
    assert parse_progress_line("progress=continue", 10.0) is None


def test_unknown_duration_suppresses_progress():
    assert parse_progress_line("out_time_ms=5000000", 0) is None
    assert parse_progress_line("out_time=00:00:07.500000", -1) is None


def test_percentage_is_clamped():
    assert parse_progress_line("out_time_ms=50000000", 10.0) == 100.0
    assert parse_progress_line("out_time=-577014:32:22.775808", 10.0) == 0.0
    assert compute_percentage(-3, 10) == 0.0


def test_out_time_fraction_padded_or_truncated():
    assert parse_out_time("01:02:03.5") == 3723.5
    assert math.isclose(parse_out_time("00:00:01.1234567"), 1.123456)
    assert parse_out_time("00:00:09") == 9.0
    assert parse_out_time("N/A") is None
    assert parse_out_time("00:xx:01") is None


def test_unusable_values_ignored():
    assert parse_progress_line("out_time_ms=N/A", 10.0) is None
    assert parse_progress_line("out_time=N/A", 10.0) is None
    assert parse_progress_line("bitrate=1000kbits/s", 10.0) is None


def test_progress_line_detection():
    assert is_progress_line("out_time_ms=1")
    assert is_progress_line("out_time=00:00:01.000000")
    assert is_progress_line("progress=end")
    assert not is_progress_line("progress=continue")
    assert not is_progress_line("out_time_us=1")
    assert not is_progress_line("frame=12")
    assert not is_progress_line("Stream mapping:")


def test_command_adds_progress_flags():
    runner = FFmpegRunner("ffmpeg")
    cmd = runner.build_command(["-i", "a.mkv", "out.mkv"])
    assert cmd == ["ffmpeg", "-progress", "pipe:1", "-nostats", "-i", "a.mkv", "out.mkv"]


def test_run_emits_progress_logs_and_one_completed():
    stdout = "frame=10\nout_time_ms=5000000\n\nout_time=00:00:07.500000\nprogress=end\n"
    stderr = "Input #0, matroska\n\n  Stream #0:0: Video: h264\n"
    events = []

    with patch("ffmpeg_runner.subprocess.Popen", return_value=fake_process(stdout, stderr, 0)) as popen:
        runner = FFmpegRunner("ffmpeg")
        result = runner.run(["-i", "a.mkv", "out.mkv"], timedelta(seconds=10), events.append)

    assert popen.call_args[0][0][:4] == ["ffmpeg", "-progress", "pipe:1", "-nostats"]

    progress = [e.percentage for e in events if e.kind == EventKind.PROGRESS]
    assert progress == [50.0, 75.0, 100.0]

    logs = [e.line for e in events if e.kind == EventKind.LOG]
    assert sorted(logs) == sorted(["frame=10", "Input #0, matroska", "  Stream #0:0: Video: h264"])

    completed = [e for e in events if e.kind == EventKind.COMPLETED]
    assert len(completed) == 1
    assert events[-1].kind == EventKind.COMPLETED
    assert completed[0].returncode == 0

    assert result.succeeded
    assert result.state == RunState.COMPLETED
    assert runner.state == RunState.COMPLETED


def test_nonzero_exit_still_completes_but_fails():
    stderr = "out.mp4: Invalid argument\n"
    events = []

    with patch("ffmpeg_runner.subprocess.Popen", return_value=fake_process("", stderr, 1)):
        result = FFmpegRunner("ffmpeg").run(["-i", "a.mkv", "out.mp4"], 10, events.append)

    assert [e.kind for e in events] == [EventKind.LOG, EventKind.COMPLETED]
    assert events[-1].returncode == 1
    assert not result.succeeded
    assert result.state == RunState.FAILED
    assert "Invalid argument" in result.log_text


def test_launch_failure_reports_completed():
    events = []
    with patch("ffmpeg_runner.subprocess.Popen", side_effect=FileNotFoundError("no such file")):
        result = FFmpegRunner("/missing/ffmpeg").run(["-i", "a.mkv", "b.mkv"], 10, events.append)

    assert events[-1].kind == EventKind.COMPLETED
    assert events[-1].returncode is None
    assert sum(1 for e in events if e.kind == EventKind.COMPLETED) == 1
    assert result.state == RunState.FAILED


def test_cancel_terminates_process():
    cancel = threading.Event()
    cancel.set()
    process = fake_process("out_time_ms=1000000\n", "", -15)

    with patch("ffmpeg_runner.subprocess.Popen", return_value=process):
        runner = FFmpegRunner("ffmpeg")
        result = runner.run(["-i", "a.mkv", "b.mkv"], 10, None, cancel)

    process.terminate.assert_called()
    assert result.cancelled
    assert result.state == RunState.FAILED


def test_submit_runs_in_background():
    with patch("ffmpeg_runner.subprocess.Popen", return_value=fake_process("progress=end\n", "", 0)):
        runner = FFmpegRunner("ffmpeg")
        future = runner.submit(["-i", "a.mkv", "b.mkv"], 5)
        result = future.result(timeout=10)
        runner.shutdown()

    assert result.succeeded


def test_negative_out_time_keeps_sign():
    assert parse_out_time("-00:00:00.023220") == -0.02322
    assert parse_out_time("-00:01:30") == -90.0
    assert parse_progress_line("out_time=-00:00:00.500000", 10.0) == 0.0


def test_closing_event_stream_early_marks_run_failed():
    process = fake_process("out_time_ms=1000000\nout_time_ms=2000000\n", "", -15)
    process.poll.return_value = None
    process.returncode = -15

    with patch("ffmpeg_runner.subprocess.Popen", return_value=process):
        runner = FFmpegRunner("ffmpeg")
        events = runner.iter_events(["-i", "a.mkv", "b.mkv"], 10)
        first = next(events)
        assert runner.state == RunState.RUNNING
        events.close()

    assert first.kind == EventKind.PROGRESS
    process.terminate.assert_called()
    assert runner.state == RunState.FAILED
    assert runner.cancelled
    assert runner.returncode == -15


def test_real_child_drains_both_pipes():
    script = (
        "import sys\n"
        "for i in range(20000):\n"
        "    sys.stderr.write('frame %d\\n' % i)\n"
        "sys.stdout.write('out_time_ms=5000000\\nprogress=end\\n')\n"
        "sys.exit(3)\n"
    )
    runner = FFmpegRunner(sys.executable)
    runner.build_command = lambda arguments: [sys.executable, "-c", script]
    events = []

    result = runner.run([], 10, events.append)

    assert [e.percentage for e in events if e.kind == EventKind.PROGRESS] == [50.0, 100.0]
    assert sum(1 for e in events if e.kind == EventKind.LOG) == 20000
    assert [e.kind for e in events].count(EventKind.COMPLETED) == 1
    assert result.returncode == 3
    assert result.state == RunState.FAILED

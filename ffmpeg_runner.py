import queue
import shlex
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, Iterator, List, Optional, Union
from models.progress import EventKind, ProgressEvent, RunResult, RunState
from logger import setup_logger

logger = setup_logger()

# -progress writes key=value lines to stdout; stderr keeps the usual logs
PROGRESS_FLAGS = ["-progress", "pipe:1", "-nostats"]

OUT_TIME_MS_KEY = "out_time_ms"   # microseconds, despite the name
OUT_TIME_KEY = "out_time"         # HH:MM:SS.ffffff
PROGRESS_KEY = "progress"
PROGRESS_END = "end"

TERMINATE_GRACE_SECONDS = 5
_POLL_SECONDS = 0.1
_CHANNEL_CLOSED = object()

Duration = Union[float, int, timedelta]
EventCallback = Callable[[ProgressEvent], None]


def _to_seconds(duration: Optional[Duration]) -> float:
    if duration is None:
        return 0.0
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def parse_out_time(value: str) -> Optional[float]:
    """
    Parses HH:MM:SS[.fraction] into seconds. The fraction is padded or
    truncated to six digits (microseconds). A leading '-' negates the whole
    value, so '-00:00:00.5' is -0.5. Returns None if malformed.
    """
    value = value.strip()
    sign = 1
    if value.startswith("-"):
        sign = -1
        value = value[1:]
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        hours = int(parts[0])
        minutes = int(parts[1])
        sec_parts = parts[2].split(".")
        seconds = int(sec_parts[0])
        micro = 0
        if len(sec_parts) > 1:
            micro = int(sec_parts[1][:6].ljust(6, "0"))
    except ValueError:
        return None
    return sign * (hours * 3600 + minutes * 60 + seconds + micro / 1_000_000)


def compute_percentage(elapsed_seconds: float, total_seconds: float) -> Optional[float]:
    if total_seconds <= 0:
        return None
    return max(0.0, min(100.0, elapsed_seconds / total_seconds * 100.0))


def is_progress_line(line: str) -> bool:
    key, sep, value = line.strip().partition("=")
    if not sep:
        return False
    key = key.strip()
    return key in (OUT_TIME_MS_KEY, OUT_TIME_KEY) or (key == PROGRESS_KEY and value.strip() == PROGRESS_END)


def parse_progress_line(line: str, total_seconds: float) -> Optional[float]:
    """
    Returns the completion percentage carried by a -progress line, or None when
    the line holds no usable timing (unknown key, N/A value, unknown duration).
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    key = key.strip()
    value = value.strip()

    if key == PROGRESS_KEY:
        return 100.0 if value == PROGRESS_END else None
    if key == OUT_TIME_MS_KEY:
        try:
            micro = int(value)
        except ValueError:
            return None
        return compute_percentage(micro / 1_000_000, total_seconds)
    if key == OUT_TIME_KEY:
        elapsed = parse_out_time(value)
        if elapsed is None:
            return None
        return compute_percentage(elapsed, total_seconds)
    return None


class FFmpegRunner:
    """
    Runs ffmpeg with -progress enabled and turns both output channels into a
    stream of ProgressEvents. One run at a time per instance.
    """

    def __init__(self, ffmpeg_path: str):
        self.ffmpeg_path = ffmpeg_path
        self.state = RunState.NOT_STARTED
        self.returncode: Optional[int] = None
        self.cancelled = False
        self._executor: Optional[ThreadPoolExecutor] = None

    def build_command(self, arguments: List[str]) -> List[str]:
        return [self.ffmpeg_path, *PROGRESS_FLAGS, *arguments]

    def iter_events(self, arguments: List[str], total_duration: Optional[Duration],
                    cancel_event: Optional[threading.Event] = None) -> Iterator[ProgressEvent]:
        """
        Launches ffmpeg and yields events as they arrive. The last event is
        always exactly one COMPLETED carrying the exit code.
        """
        total_seconds = _to_seconds(total_duration)
        cmd = self.build_command(arguments)
        self.state = RunState.RUNNING
        self.returncode = None
        self.cancelled = False

        logger.info(f"Running: {shlex.join(cmd)}")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace',
            )
        except OSError as e:
            logger.error(f"FFmpeg execution error: {e}")
            self.state = RunState.FAILED
            yield ProgressEvent.log(f"Failed to start {self.ffmpeg_path}: {e}")
            yield ProgressEvent.completed(None)
            return

        events: "queue.Queue" = queue.Queue()
        readers = [
            threading.Thread(target=self._read_progress, args=(process.stdout, events, total_seconds), daemon=True),
            threading.Thread(target=self._read_diagnostics, args=(process.stderr, events), daemon=True),
        ]
        for reader in readers:
            reader.start()

        finished = False
        try:
            open_channels = len(readers)
            while open_channels:
                if cancel_event is not None and cancel_event.is_set() and not self.cancelled:
                    self.cancelled = True
                    logger.warning("Cancellation requested, terminating ffmpeg")
                    self._terminate(process)
                try:
                    item = events.get(timeout=_POLL_SECONDS)
                except queue.Empty:
                    continue
                if item is _CHANNEL_CLOSED:
                    open_channels -= 1
                    continue
                yield item

            returncode = process.wait()
            for reader in readers:
                reader.join()
            finished = True
        finally:
            if not finished:
                # Consumer stopped early: do not leave ffmpeg running behind it
                if process.poll() is None:
                    self._terminate(process)
                self.cancelled = True
                self.returncode = process.returncode
                self.state = RunState.FAILED
                logger.warning("FFmpeg run abandoned before completion")

        self.returncode = returncode
        self.state = RunState.COMPLETED if returncode == 0 and not self.cancelled else RunState.FAILED
        logger.info(f"FFmpeg exited with code {returncode}")
        yield ProgressEvent.completed(returncode)

    def run(self, arguments: List[str], total_duration: Optional[Duration],
            on_event: Optional[EventCallback] = None,
            cancel_event: Optional[threading.Event] = None) -> RunResult:
        """
        Blocking run. Every event goes to `on_event`; the accumulated log and
        final state come back in the RunResult.
        """
        log_lines = []
        for event in self.iter_events(arguments, total_duration, cancel_event):
            if event.kind == EventKind.LOG:
                log_lines.append(event.line)
                logger.debug(f"[ffmpeg] {event.line}")
            if on_event:
                on_event(event)

        result = RunResult(
            returncode=self.returncode,
            state=self.state,
            cancelled=self.cancelled,
            log_lines=log_lines,
        )
        if not result.succeeded:
            tail = "\n".join(log_lines[-10:])
            logger.error(f"FFmpeg failed (code {self.returncode}): {tail}")
        return result

    def submit(self, arguments: List[str], total_duration: Optional[Duration],
               on_event: Optional[EventCallback] = None,
               cancel_event: Optional[threading.Event] = None) -> "Future[RunResult]":
        """
        Runs in a background thread; the caller decides when to wait on the future.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ffmpeg-runner")
        return self._executor.submit(self.run, arguments, total_duration, on_event, cancel_event)

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _read_progress(self, stream, events: "queue.Queue", total_seconds: float):
        try:
            for raw in iter(stream.readline, ""):
                line = raw.rstrip("\r\n")
                if not line.strip():
                    continue
                if is_progress_line(line):
                    percentage = parse_progress_line(line, total_seconds)
                    if percentage is not None:
                        events.put(ProgressEvent.progress(percentage))
                else:
                    events.put(ProgressEvent.log(line))
        finally:
            stream.close()
            events.put(_CHANNEL_CLOSED)

    def _read_diagnostics(self, stream, events: "queue.Queue"):
        try:
            for raw in iter(stream.readline, ""):
                line = raw.rstrip("\r\n")
                if line.strip():
                    events.put(ProgressEvent.log(line))
        finally:
            stream.close()
            events.put(_CHANNEL_CLOSED)

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("FFmpeg did not stop, killing it")
            process.kill()
            process.wait()

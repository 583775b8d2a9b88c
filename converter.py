import os
import threading
from typing import Callable, Dict, List, Optional
from models.progress import EventKind, ProgressEvent, RunResult
from models.track import TrackDescriptor
from audio_filters import AudioArgs, build_audio_args
from ffmpeg_runner import FFmpegRunner
from plan_builder import build_extract_plan
from session import FALLBACK_DURATION_SECONDS, RemuxPlan
from file_ops import ensure_output_dir, output_path_for
from errors import InputValidationError
from utils.tools import resolve_tool
from logger import setup_logger

logger = setup_logger()

EventCallback = Callable[[ProgressEvent], None]


def overall_progress(completed_streams: int, total_streams: int, stream_percentage: float) -> float:
    """
    Maps stream N's local 0-100 onto [N/total*100, (N+1)/total*100].
    """
    if total_streams <= 0:
        return 0.0
    return (completed_streams + stream_percentage / 100.0) / total_streams * 100.0


def build_transcode_args(input_path: str, stream_index: int, output_path: str, audio: AudioArgs) -> List[str]:
    args = ["-i", input_path, "-map", f"0:{stream_index}"]
    if audio.filter_chain:
        args.extend(["-af", audio.filter_chain])
    args.extend(audio.codec_args)
    args.extend(audio.container_args)
    args.append(output_path)
    return args


class Converter:
    def __init__(self, config: Dict, runner: Optional[FFmpegRunner] = None):
        self.config = config
        if runner is None:
            ffmpeg_path = resolve_tool("ffmpeg", config.get("ffmpeg_path"), config.get("tools_dir"))
            runner = FFmpegRunner(ffmpeg_path)
        self.runner = runner
        self.overwrite = config.get("overwrite", True)

    def _with_overwrite(self, arguments: List[str]) -> List[str]:
        return ["-y" if self.overwrite else "-n", *arguments]

    def _run_ffmpeg(self, arguments: List[str], total_duration: float,
                    on_event: Optional[EventCallback] = None,
                    cancel_event: Optional[threading.Event] = None) -> RunResult:
        if not total_duration or total_duration <= 0:
            total_duration = FALLBACK_DURATION_SECONDS
        return self.runner.run(self._with_overwrite(arguments), total_duration, on_event, cancel_event)

    def remux(self, plan: RemuxPlan, on_event: Optional[EventCallback] = None,
              cancel_event: Optional[threading.Event] = None) -> RunResult:
        ensure_output_dir(os.path.dirname(plan.output_path))
        logger.info(f"Starting REMUX -> {plan.output_path} "
                    f"[{len(plan.accepted)} tracks, {len(plan.rejected)} excluded]")
        result = self._run_ffmpeg(plan.arguments, plan.total_duration, on_event, cancel_event)
        if result.succeeded:
            logger.info(f"DONE: new_file=\"{plan.output_path}\"")
        return result

    def extract(self, input_path: str, tracks: List[TrackDescriptor], output_dir: str,
                total_duration: float, on_event: Optional[EventCallback] = None,
                cancel_event: Optional[threading.Event] = None) -> RunResult:
        """
        Copies each selected stream of `input_path` into its own file with one ffmpeg call.
        """
        if not input_path or not os.path.isfile(input_path):
            raise InputValidationError("Please select an input file.")
        ensure_output_dir(output_dir)

        arguments, outputs = build_extract_plan(input_path, tracks, output_dir)
        logger.info(f"Starting EXTRACT: {input_path} -> {', '.join(os.path.basename(o) for o in outputs)}")
        return self._run_ffmpeg(arguments, total_duration, on_event, cancel_event)

    def transcode_audio(self, input_path: str, stream_indices: List[int], output_dir: str,
                        audio_format: str, bitrate: Optional[str] = None, tempo_factor: float = 1.0,
                        preserve_pitch: bool = True, gain_db: Optional[float] = None, downmix: bool = False,
                        total_duration: float = 0.0, on_event: Optional[EventCallback] = None,
                        cancel_event: Optional[threading.Event] = None) -> List[RunResult]:
        """
        Transcodes each selected audio stream into its own file, one ffmpeg run per
        stream, in order. Progress reported to `on_event` is the overall batch value.
        """
        if not input_path or not os.path.isfile(input_path):
            raise InputValidationError("Please choose an input file.")
        if not stream_indices:
            raise InputValidationError("Please select at least one audio stream from the list.")
        if not audio_format:
            raise InputValidationError("Please select an output format.")

        ensure_output_dir(output_dir)
        audio = build_audio_args(audio_format, bitrate, tempo_factor, preserve_pitch, gain_db, downmix)
        total_streams = len(stream_indices)
        results = []

        for completed_streams, stream_index in enumerate(stream_indices):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Transcode cancelled before stream {stream_index}")
                break

            out_path = output_path_for(input_path, output_dir, f"_a{stream_index}", audio.extension)
            arguments = build_transcode_args(input_path, stream_index, out_path, audio)

            def forward(event: ProgressEvent, done=completed_streams, index=stream_index, path=out_path):
                if on_event is None:
                    return
                if event.kind == EventKind.PROGRESS:
                    on_event(ProgressEvent.progress(overall_progress(done, total_streams, event.percentage)))
                elif event.kind == EventKind.LOG:
                    on_event(event)
                elif event.returncode == 0:
                    on_event(ProgressEvent.progress(overall_progress(done + 1, total_streams, 0.0)))
                    on_event(ProgressEvent.log(f"Finished stream {index} -> {os.path.basename(path)}"))
                else:
                    on_event(ProgressEvent.log(f"Stream {index} failed (exit code {event.returncode})"))

            logger.info(f"Starting TRANSCODE: {input_path} stream #{stream_index} -> {out_path} "
                        f"[{audio_format}, filters: {audio.filter_chain or 'none'}]")
            result = self._run_ffmpeg(arguments, total_duration, forward, cancel_event)
            results.append(result)

        failed = [r for r in results if not r.succeeded]
        if on_event is not None:
            returncode = failed[0].returncode if failed else 0
            on_event(ProgressEvent.completed(returncode))
        logger.info(f"Transcode finished: {len(results) - len(failed)}/{total_streams} streams succeeded")
        return results

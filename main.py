import argparse
import os
import sys
import yaml
from typing import Dict, List, Optional, Tuple
from logger import setup_logger, configure_logging
from models.progress import EventKind, ProgressEvent
from utils.ffprobe_wrapper import FFprobeWrapper
from session import RemuxSession
from converter import Converter
from audio_filters import AUDIO_FORMATS, BITRATE_OPTIONS, tempo_from_fps, validate_bitrate
from compatibility import SUPPORTED_CONTAINERS
from file_ops import default_output_dir
from errors import RemuxPlannerError, InputValidationError

logger = setup_logger()

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_CONFIG = {
    "ffmpeg_path": "",
    "ffprobe_path": "",
    "tools_dir": "ffmpeg",
    "output_dir": "",
    "overwrite": True,
    "log_file": "logs/remux_planner.log",
    "log_level": "INFO",
    "default_container": "mkv",
    "audio_format": "wav",
    "audio_bitrate": None,
    "remux_suffix": "_remux",
}


def load_config(path: Optional[str] = None) -> Dict:
    """
    Built-in defaults overlaid with the YAML file. A config file that was asked
    for explicitly must exist; the default one is optional.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(config_path):
        if path:
            logger.critical(f"Config file not found: {path}")
            sys.exit(1)
        return config
    with open(config_path, "r", encoding="utf-8") as f:
        config.update(yaml.safe_load(f) or {})
    return config


def parse_track_key(text: str) -> Tuple[int, int]:
    """'1:3' -> (1, 3); a bare '3' means stream 3 of the primary input."""
    parts = text.strip().split(":")
    try:
        if len(parts) == 1:
            return (0, int(parts[0]))
        if len(parts) == 2:
            return (int(parts[0]), int(parts[1]))
    except ValueError:
        pass
    raise InputValidationError(f"Invalid track reference: {text!r} (expected INPUT:STREAM)")


def parse_track_options(tokens: List[str]) -> Dict:
    """
    ['0:1,0:2', 'lang=en', 'default', 'delay=250'] -> keys plus apply_options kwargs.
    """
    if not tokens:
        raise InputValidationError("--set needs at least a track reference")
    keys = [parse_track_key(k) for k in tokens[0].split(",") if k.strip()]
    options = {"language": "", "is_default": False, "is_forced": False, "delay_ms": 0}
    for token in tokens[1:]:
        name, _, value = token.partition("=")
        name = name.strip().lower()
        if name in ("lang", "language"):
            options["language"] = value.strip()
        elif name == "default":
            options["is_default"] = value.strip().lower() not in ("0", "false", "no")
        elif name == "forced":
            options["is_forced"] = value.strip().lower() not in ("0", "false", "no")
        elif name == "delay":
            try:
                options["delay_ms"] = int(value)
            except ValueError:
                raise InputValidationError(f"Invalid delay: {value!r} (milliseconds expected)")
        else:
            raise InputValidationError(f"Unknown track option: {name!r}")
    return {"keys": keys, **options}


def parse_stream_list(text: str) -> List[int]:
    try:
        return [int(s) for s in text.split(",") if s.strip()]
    except ValueError:
        raise InputValidationError(f"Invalid stream list: {text!r}")


class ConsoleProgress:
    """Prints progress on one line; ffmpeg's own chatter goes to the debug log."""

    def __init__(self):
        self.last_shown = -1

    def __call__(self, event: ProgressEvent):
        if event.kind == EventKind.PROGRESS:
            shown = int(event.percentage)
            if shown != self.last_shown:
                self.last_shown = shown
                print(f"\rProgress: {shown:3d}%", end="", flush=True)
        elif event.kind == EventKind.LOG:
            logger.debug(f"[ffmpeg] {event.line}")
        else:
            print()


class RemuxPlannerApp:
    def __init__(self, config: Dict):
        self.config = config
        self._ffprobe = None
        self._converter = None

    @property
    def ffprobe(self) -> FFprobeWrapper:
        if self._ffprobe is None:
            self._ffprobe = FFprobeWrapper(self.config.get("ffprobe_path"), self.config.get("tools_dir"))
        return self._ffprobe

    @property
    def converter(self) -> Converter:
        if self._converter is None:
            self._converter = Converter(self.config)
        return self._converter

    def _output_dir(self, requested: Optional[str], input_path: str) -> str:
        return requested or self.config.get("output_dir") or default_output_dir(input_path)

    def probe(self, args) -> int:
        session = RemuxSession(self.ffprobe)
        session.add_files(args.files)
        if not session.input_files:
            raise InputValidationError("No readable input files.")
        info = session.primary_info
        print(f"{os.path.basename(info.path)}: {info.container_format}, "
              f"{info.duration_seconds:.2f}s, {info.size_mb:.2f} MB, {info.bitrate} bit/s")
        for index, path in enumerate(session.input_files):
            print(f"Input #{index}: {path}")
        for track in session.tracks:
            print(f"  {track.display_text()}")
        return 0

    def remux(self, args) -> int:
        session = RemuxSession(self.ffprobe)
        session.load_primary(args.input)
        for extra in args.add or []:
            session.add_external(extra)

        for ref in args.exclude or []:
            session.set_included([parse_track_key(ref)], False)
        for tokens in args.set or []:
            options = parse_track_options(tokens)
            session.apply_options(options.pop("keys"), **options)

        container = args.container or self.config.get("default_container")
        try:
            plan = session.prepare_remux(container, self._output_dir(args.output_dir, args.input),
                                         self.config.get("remux_suffix", "_remux"))
        except InputValidationError as e:
            for r in e.rejected:
                print(f" - {r.label}  (excluded: {r.reject_reason})")
            raise

        print("\n".join(plan.report))
        result = self.converter.remux(plan, ConsoleProgress())
        print("Remux complete" if result.succeeded else f"Remux failed (exit code {result.returncode})")
        return 0 if result.succeeded else 1

    def extract(self, args) -> int:
        info = self.ffprobe.probe(args.input)
        wanted = set(parse_stream_list(args.streams))
        tracks = [t for t in info.tracks if t.stream_index in wanted]
        missing = wanted - {t.stream_index for t in tracks}
        if missing:
            raise InputValidationError(f"No such stream(s): {', '.join(str(m) for m in sorted(missing))}")

        result = self.converter.extract(args.input, tracks, self._output_dir(args.output_dir, args.input),
                                        info.duration_seconds, ConsoleProgress())
        print("Extraction complete" if result.succeeded else f"Extraction failed (exit code {result.returncode})")
        return 0 if result.succeeded else 1

    def transcode(self, args) -> int:
        info = self.ffprobe.probe(args.input)
        streams = parse_stream_list(args.streams)
        audio_indices = {t.stream_index for t in info.tracks_of_type("audio")}
        not_audio = [s for s in streams if s not in audio_indices]
        if not_audio:
            raise InputValidationError(f"Not audio stream(s): {', '.join(str(s) for s in not_audio)}")

        tempo_factor = 1.0
        if args.source_fps or args.target_fps:
            tempo_factor = tempo_from_fps(args.source_fps, args.target_fps)

        audio_format = args.format or self.config.get("audio_format")
        bitrate = validate_bitrate(audio_format, args.bitrate or self.config.get("audio_bitrate"))

        results = self.converter.transcode_audio(
            args.input, streams, self._output_dir(args.output_dir, args.input),
            audio_format=audio_format,
            bitrate=bitrate,
            tempo_factor=tempo_factor,
            preserve_pitch=not args.no_preserve_pitch,
            gain_db=args.gain,
            downmix=args.downmix,
            total_duration=info.duration_seconds,
            on_event=ConsoleProgress(),
        )
        ok = len(results) == len(streams) and all(r.succeeded for r in results)
        print("All selected streams finished." if ok else "Some streams failed, see the log.")
        return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="remux-planner", description="Plan and run ffmpeg remux, extraction and audio transcode jobs.")
    parser.add_argument("--config", help=f"YAML config file (default: {DEFAULT_CONFIG_PATH} if present)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("probe", help="List the tracks of one or more files")
    p.add_argument("files", nargs="+")

    p = sub.add_parser("remux", help="Stream-copy selected tracks into one container")
    p.add_argument("input")
    p.add_argument("--add", action="append", metavar="FILE", help="Additional input file")
    p.add_argument("--container", choices=SUPPORTED_CONTAINERS)
    p.add_argument("--output-dir")
    p.add_argument("--exclude", action="append", metavar="I:S", help="Leave a track out")
    p.add_argument("--set", action="append", nargs="+", metavar="OPT",
                   help="I:S[,I:S...] followed by lang=XX, default, forced, delay=MS")

    p = sub.add_parser("extract", help="Copy streams out into separate files")
    p.add_argument("input")
    p.add_argument("--streams", required=True, help="Comma separated stream indices")
    p.add_argument("--output-dir")

    p = sub.add_parser("transcode", help="Re-encode audio streams")
    p.add_argument("input")
    p.add_argument("--streams", required=True, help="Comma separated audio stream indices")
    p.add_argument("--format", choices=sorted(AUDIO_FORMATS))
    p.add_argument("--bitrate", help="; ".join(f"{name}: {', '.join(options)}"
                                             for name, options in sorted(BITRATE_OPTIONS.items())))
    p.add_argument("--source-fps", type=float)
    p.add_argument("--target-fps", type=float)
    p.add_argument("--no-preserve-pitch", action="store_true")
    p.add_argument("--gain", type=float, metavar="DB")
    p.add_argument("--downmix", action="store_true")
    p.add_argument("--output-dir")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(config.get("log_file"), config.get("log_level", "INFO"))

    app = RemuxPlannerApp(config)
    try:
        return getattr(app, args.command)(args)
    except RemuxPlannerError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Stopping...")
        return 130


if __name__ == "__main__":
    sys.exit(main())

import os
from decimal import Decimal
from typing import Dict, List, Tuple
from models.track import TrackDescriptor
from errors import InputValidationError
from file_ops import make_safe_file_name

# Extensions used when a single stream is copied out on its own
AUDIO_EXTRACT_EXTENSIONS = {
    "aac": "m4a",
    "mp3": "mp3",
    "flac": "flac",
    "opus": "opus",
    "ac3": "ac3",
    "eac3": "eac3",
    "dts": "dts",
    "truehd": "thd",
}
SUBTITLE_EXTRACT_EXTENSIONS = {
    "subrip": "srt",
    "ass": "ass",
    "ssa": "ass",
    "hdmv_pgs_subtitle": "sup",
}


def format_offset(delay_ms: int) -> str:
    """Milliseconds -> seconds string for -itsoffset, without float noise (250 -> '0.25')."""
    return str(Decimal(delay_ms) / 1000)


def build_remux_plan(input_files: List[str], tracks: List[TrackDescriptor], output_path: str) -> List[str]:
    """
    Builds the ffmpeg argument list for one stream-copy remux of `tracks`
    (already accepted for the target container) into `output_path`.

    Argument order matters to ffmpeg and is fixed:
    inputs, delayed inputs, maps, -c copy, metadata/dispositions, output.
    """
    if not input_files:
        raise InputValidationError("No input files to remux.")
    if not tracks:
        raise InputValidationError("No tracks to remux.")
    for t in tracks:
        if t.input_index >= len(input_files):
            raise InputValidationError(
                f"Track {t.input_index}:{t.stream_index} references unknown input #{t.input_index}")

    args: List[str] = []

    # 1) Base inputs
    for path in input_files:
        args.extend(["-i", path])

    base_input_count = len(input_files)

    # 2) Delayed inputs, one per distinct (file, delay)
    delayed_inputs: Dict[Tuple[str, int], int] = {}
    for t in tracks:
        if t.delay_ms == 0:
            continue
        key = (input_files[t.input_index], t.delay_ms)
        if key not in delayed_inputs:
            args.extend(["-itsoffset", format_offset(t.delay_ms), "-i", key[0]])
            delayed_inputs[key] = base_input_count + len(delayed_inputs)

    # 3) Maps, with output-relative indices counted per type
    out_counters = {"v": 0, "a": 0, "s": 0}
    post_flags: List[str] = []

    for t in tracks:
        if t.delay_ms != 0:
            map_input = delayed_inputs[(input_files[t.input_index], t.delay_ms)]
        else:
            map_input = t.input_index

        args.extend(["-map", f"{map_input}:{t.stream_index}"])

        type_code = t.type_code
        if not type_code:
            continue

        out_idx = out_counters[type_code]
        out_counters[type_code] += 1

        if t.language:
            post_flags.extend([f"-metadata:s:{type_code}:{out_idx}", f"language={t.language}"])

        flags = []
        if t.is_default:
            flags.append("default")
        if t.is_forced:
            flags.append("forced")
        if flags:
            post_flags.extend([f"-disposition:{type_code}:{out_idx}", "+".join(flags)])

    # 4) Stream copy
    args.extend(["-c", "copy"])

    # 5) Metadata/dispositions apply to already mapped streams
    args.extend(post_flags)

    # 6) Output
    args.append(output_path)
    return args


def format_plan_report(container_ext: str, accepted: List[TrackDescriptor], rejected: List[TrackDescriptor]) -> List[str]:
    lines = ["=== Remux Plan ===", f"Container: .{container_ext}"]
    for t in accepted:
        lines.append(f" + {t.label}")
    for t in rejected:
        lines.append(f" - {t.label}  (excluded: {t.reject_reason})")
    lines.append("==================")
    return lines


def extract_extension(track_type: str, codec: str) -> str:
    codec = (codec or "").lower()
    track_type = (track_type or "").lower()

    if track_type == "audio":
        return AUDIO_EXTRACT_EXTENSIONS.get(codec, "mka")
    if track_type == "video":
        return "mkv"
    if track_type == "subtitle":
        return SUBTITLE_EXTRACT_EXTENSIONS.get(codec, "mks")
    return "bin"


def build_extract_plan(input_path: str, tracks: List[TrackDescriptor], output_dir: str) -> Tuple[List[str], List[str]]:
    """
    Builds one ffmpeg invocation that copies each selected stream of a single
    input into its own file. Returns (arguments, output paths).
    """
    if not tracks:
        raise InputValidationError("Please select at least one stream to extract.")

    safe_base = make_safe_file_name(os.path.splitext(os.path.basename(input_path))[0])
    args = ["-i", input_path]
    outputs = []

    for t in tracks:
        ext = extract_extension(t.type, t.codec)
        out_path = os.path.join(output_dir, f"{safe_base}_stream_{t.stream_index}.{ext}")
        args.extend(["-map", f"0:{t.stream_index}", "-c", "copy", out_path])
        outputs.append(out_path)

    return args, outputs

import math
from pydantic import BaseModel
from typing import List, Optional
from errors import InputValidationError

TEMPO_EPSILON = 0.0001
ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0

# name -> (encoder args, default bitrate, extension, container args)
# Lossless and quality-scaled formats carry no bitrate.
AUDIO_FORMATS = {
    "wav": (["-c:a", "pcm_s16le"], None, "wav", []),
    "wav64": (["-c:a", "pcm_s16le"], None, "w64", ["-f", "w64"]),
    "aac": (["-c:a", "aac"], "192k", "m4a", []),
    "ac3": (["-c:a", "ac3"], "640k", "ac3", []),
    "dts": (["-c:a", "dca"], "1536k", "dts", []),
    "eac3": (["-c:a", "eac3"], "768k", "eac3", []),
    "flac": (["-c:a", "flac"], None, "flac", []),
    "ogg": (["-c:a", "libvorbis", "-q:a", "5"], None, "ogg", []),
    "opus": (["-c:a", "libopus"], "160k", "opus", []),
    "mp3": (["-c:a", "libmp3lame"], "192k", "mp3", []),
}
FALLBACK_FORMAT = "wav"

# Bitrate choices offered per format; the first is the suggested default
BITRATE_OPTIONS = {
    "aac": ["128k", "192k", "256k", "320k"],
    "ac3": ["192k", "384k", "640k"],
    "eac3": ["192k", "384k", "768k"],
    "dts": ["768k", "1536k"],
    "opus": ["96k", "128k", "160k", "192k"],
    "mp3": ["128k", "192k", "256k", "320k"],
}


def validate_bitrate(audio_format: str, bitrate: Optional[str]) -> Optional[str]:
    """
    Checks a requested bitrate against the choices for `audio_format`.
    Formats without bitrate choices ignore it, so None is returned for them.
    """
    options = BITRATE_OPTIONS.get((audio_format or "").strip().lower())
    if not bitrate or not options:
        return None
    bitrate = bitrate.strip().lower()
    if bitrate not in options:
        raise InputValidationError(
            f"Bitrate {bitrate} is not available for {audio_format} (choose from {', '.join(options)})")
    return bitrate


class AudioArgs(BaseModel):
    extension: str
    codec_args: list[str] = []
    container_args: list[str] = []
    filter_chain: str = ""


def _format_number(value: float, decimals: int) -> str:
    text = f"{value:.{decimals}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def split_tempo_chain(factor: float) -> List[float]:
    """
    Splits a tempo factor into atempo stages that each stay within [0.5, 2.0].
    The product of the stages equals `factor`, e.g. 5.0 -> [2.0, 2.0, 1.25].
    """
    remaining = factor
    if not math.isfinite(remaining) or remaining <= 0:
        remaining = 1.0

    stages = []
    if remaining >= 1.0:
        while remaining > ATEMPO_MAX:
            stages.append(ATEMPO_MAX)
            remaining /= ATEMPO_MAX
    else:
        while remaining < ATEMPO_MIN:
            stages.append(ATEMPO_MIN)
            remaining /= ATEMPO_MIN
    stages.append(remaining)
    return stages


def build_audio_filter_chain(tempo_factor: float, preserve_pitch: bool, gain_db: Optional[float]) -> str:
    filters = []

    if abs(tempo_factor - 1.0) > TEMPO_EPSILON:
        if preserve_pitch:
            for stage in split_tempo_chain(tempo_factor):
                filters.append(f"atempo={_format_number(stage, 8)}")
        else:
            # Pitch follows speed: play at a scaled rate, then resample back
            filters.append(f"asetrate=sample_rate*{_format_number(tempo_factor, 8)}")
            filters.append("aresample=sample_rate")

    if gain_db is not None and math.isfinite(gain_db) and abs(gain_db) > TEMPO_EPSILON:
        filters.append(f"volume={_format_number(gain_db, 3)}dB")

    return ",".join(filters)


def build_audio_args(
    audio_format: str,
    bitrate: Optional[str] = None,
    tempo_factor: float = 1.0,
    preserve_pitch: bool = True,
    gain_db: Optional[float] = None,
    downmix: bool = False,
) -> AudioArgs:
    """
    Resolves encoder, container and filter arguments for one transcoded audio stream.
    Unknown formats fall back to 16-bit PCM WAV.
    """
    name = (audio_format or "").strip().lower()
    encoder, default_bitrate, extension, container_args = AUDIO_FORMATS.get(name, AUDIO_FORMATS[FALLBACK_FORMAT])

    codec_args = list(encoder)
    if default_bitrate is not None:
        codec_args.extend(["-b:a", bitrate or default_bitrate])
    if name == "dts":
        # ffmpeg's native DTS encoder is still marked experimental
        codec_args.extend(["-strict", "-2"])
    if downmix:
        codec_args.extend(["-ac", "2"])

    return AudioArgs(
        extension=extension,
        codec_args=codec_args,
        container_args=list(container_args),
        filter_chain=build_audio_filter_chain(tempo_factor, preserve_pitch, gain_db),
    )


def tempo_from_fps(source_fps: float, target_fps: float) -> float:
    """Tempo factor for a frame-rate conversion, e.g. 23.976 -> 25 speeds audio up."""
    if not source_fps or not target_fps or source_fps <= 0 or target_fps <= 0:
        raise InputValidationError("Please choose valid source/target FPS.")
    return target_fps / source_fps

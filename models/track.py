from pydantic import BaseModel, Field, field_validator
from typing import Optional, Tuple

TRACK_TYPES = ("video", "audio", "subtitle", "attachment", "unknown")

# Stream specifier letter used by -metadata:s:<t>:<n> and -disposition:<t>:<n>
TYPE_CODES = {"video": "v", "audio": "a", "subtitle": "s"}


class TrackDescriptor(BaseModel):
    input_index: int = Field(0, ge=0)  # ffmpeg -i order (0 = primary)
    stream_index: int = Field(ge=0)    # index within that input
    type: str = "unknown"
    codec: str = "unknown"

    # User-editable overrides
    language: str = ""
    is_default: bool = False
    is_forced: bool = False
    delay_ms: int = 0
    is_included: bool = True

    reject_reason: str = ""  # Set only by container filtering

    # Probe details, display only
    channels: Optional[int] = None
    sample_rate: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: Optional[str] = None
    attachment_name: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        value = (value or "unknown").strip().lower()
        return value if value in TRACK_TYPES else "unknown"

    @field_validator("codec", mode="before")
    @classmethod
    def _normalize_codec(cls, value):
        return (value or "unknown").strip().lower()

    @property
    def key(self) -> Tuple[int, int]:
        return (self.input_index, self.stream_index)

    @property
    def type_code(self) -> str:
        return TYPE_CODES.get(self.type, "")

    @property
    def label(self) -> str:
        desc = f"[{self.input_index}:{self.stream_index}] {self.type.upper()} - {self.codec}"
        if self.type == "audio":
            if self.channels:
                desc += f" ({self.channels} ch)"
            if self.sample_rate:
                desc += f" {self.sample_rate} Hz"
        elif self.type == "video":
            if self.width and self.height:
                desc += f" {self.width}x{self.height}"
            if self.frame_rate:
                desc += f" {self.frame_rate}"
        elif self.type == "attachment" and self.attachment_name:
            desc += f" ({self.attachment_name})"

        if self.language:
            desc += f" [{self.language}]"
        return desc

    def display_text(self) -> str:
        parts = [self.label]

        flags = []
        if self.is_default:
            flags.append("default")
        if self.is_forced:
            flags.append("forced")
        if flags:
            parts.append(f"({','.join(flags)})")

        if self.delay_ms != 0:
            parts.append(f"{'+' if self.delay_ms > 0 else ''}{self.delay_ms}ms")
        if self.reject_reason:
            parts.append(f"[excluded: {self.reject_reason}]")
        return " ".join(parts)


class MediaInfo(BaseModel):
    path: str
    duration_seconds: float = 0.0
    bitrate: int = 0
    container_format: str = "unknown"
    size_mb: float = 0.0
    tracks: list[TrackDescriptor] = []

    def tracks_of_type(self, track_type: str) -> list[TrackDescriptor]:
        return [t for t in self.tracks if t.type == track_type]

from typing import Dict, List, Optional, Tuple
from models.track import TrackDescriptor

SUPPORTED_CONTAINERS = ("mp4", "mkv", "mov")

# Per container: audio codec fragments that are refused, the reason given,
# subtitle codecs that may be carried, and the subtitle reason.
# Matching is by substring so pcm_s16le, dts_hd etc. hit their family.
CONTAINER_RULES: Dict[str, Dict] = {
    "mp4": {
        "audio_blocked": ("flac", "dts", "truehd", "opus", "pcm", "eac3"),
        "audio_reason": "codec not supported in MP4",
        "subtitle_allowed": ("mov_text", "tx3g"),
        "subtitle_reason": "subtitle must be mov_text in MP4",
    },
    "mov": {
        "audio_blocked": ("flac", "dts", "truehd", "opus", "eac3"),
        "audio_reason": "audio codec not typical for MOV",
        "subtitle_allowed": ("mov_text", "tx3g"),
        "subtitle_reason": "subtitle must be mov_text in MOV",
    },
    # MKV is flexible; allow everything
    "mkv": {},
}


def normalize_container(container_ext: Optional[str]) -> str:
    return (container_ext or "").strip().lstrip(".").lower()


def rejection_reason(track: TrackDescriptor, container_ext: str) -> Optional[str]:
    """
    Returns why `track` cannot go into `container_ext`, or None if it can.
    """
    rules = CONTAINER_RULES.get(normalize_container(container_ext), {})
    if not rules:
        return None

    if track.type == "audio":
        if any(blocked in track.codec for blocked in rules["audio_blocked"]):
            return rules["audio_reason"]
    elif track.type == "subtitle":
        if not any(allowed in track.codec for allowed in rules["subtitle_allowed"]):
            return rules["subtitle_reason"]
    return None


def filter_by_container(tracks: List[TrackDescriptor], container_ext: str) -> Tuple[List[TrackDescriptor], List[TrackDescriptor]]:
    """
    Splits tracks into (accepted, rejected) for the target container.
    Rejected tracks come back as copies with reject_reason set; inputs are left untouched.
    """
    accepted = []
    rejected = []

    for track in tracks:
        reason = rejection_reason(track, container_ext)
        if reason is None:
            accepted.append(track.model_copy(update={"reject_reason": ""}))
        else:
            rejected.append(track.model_copy(update={"reject_reason": reason}))

    return accepted, rejected

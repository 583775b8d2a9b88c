import os
from pydantic import BaseModel
from typing import Iterable, List, Optional, Tuple
from models.track import MediaInfo, TrackDescriptor
from compatibility import SUPPORTED_CONTAINERS, filter_by_container, normalize_container
from plan_builder import build_remux_plan, format_plan_report
from file_ops import default_output_dir, output_path_for
from errors import InputValidationError
from utils.languages import to_iso639_2t
from logger import setup_logger

logger = setup_logger()

TrackKey = Tuple[int, int]

# Used when the probe cannot tell the duration, so progress still normalizes
FALLBACK_DURATION_SECONDS = 1.0


def _same_path(a: str, b: str) -> bool:
    return os.path.normcase(a).lower() == os.path.normcase(b).lower()


class RemuxPlan(BaseModel):
    container: str
    arguments: list[str]
    output_path: str
    accepted: list[TrackDescriptor]
    rejected: list[TrackDescriptor] = []
    report: list[str] = []
    total_duration: float = FALLBACK_DURATION_SECONDS


class RemuxSession:
    """
    Owns the ordered input file list (index 0 = primary) and the tracks probed
    from it. Track edits replace descriptors instead of mutating them.
    """

    def __init__(self, prober):
        self.prober = prober
        self.input_files: List[str] = []
        self.tracks: List[TrackDescriptor] = []
        self.primary_info: Optional[MediaInfo] = None

    def _is_loaded(self, path: str) -> bool:
        return any(_same_path(f, path) for f in self.input_files)

    def load_primary(self, path: str) -> MediaInfo:
        # Probe before touching state so a failed probe leaves the session as it was
        info = self.prober.probe(path, 0)
        self.input_files = [path]
        self.tracks = [t.model_copy(update={"is_included": True}) for t in info.tracks]
        self.primary_info = info
        logger.info(f"Loaded primary {path} ({len(self.tracks)} tracks)")
        return info

    def add_external(self, path: str) -> Optional[MediaInfo]:
        if not self.input_files:
            raise InputValidationError("Load a primary file before adding external inputs.")
        if self._is_loaded(path):
            logger.info(f"Skipping duplicate input {path}")
            return None

        input_index = len(self.input_files)
        info = self.prober.probe(path, input_index)
        self.input_files.append(path)
        self.tracks.extend(t.model_copy(update={"is_included": True}) for t in info.tracks)
        logger.info(f"Added external input #{input_index} {path} ({len(info.tracks)} tracks)")
        return info

    def add_files(self, paths: Iterable[str]) -> int:
        """
        First file becomes primary when none is loaded; everything else is appended
        as an external input. Missing files and duplicates are skipped.
        Returns the number of inputs added.
        """
        files = []
        for p in paths:
            if not os.path.isfile(p):
                logger.warning(f"Ignoring missing file {p}")
                continue
            if any(_same_path(p, f) for f in files):
                continue
            files.append(p)

        added = 0
        for p in files:
            if not self.input_files:
                self.load_primary(p)
                added += 1
            elif self.add_external(p) is not None:
                added += 1
        return added

    def find_track(self, key: TrackKey) -> Optional[TrackDescriptor]:
        return next((t for t in self.tracks if t.key == tuple(key)), None)

    def apply_options(self, keys: Iterable[TrackKey], language: str = "", is_default: bool = False,
                      is_forced: bool = False, delay_ms: int = 0) -> List[TrackDescriptor]:
        """
        Applies language/default/forced/delay to the selected tracks.
        An empty language leaves each track's language as it was.
        Returns the updated descriptors.
        """
        selected = {tuple(k) for k in keys}
        if not selected or not any(t.key in selected for t in self.tracks):
            raise InputValidationError("Select one or more tracks to apply options.")

        update = {"is_default": is_default, "is_forced": is_forced, "delay_ms": int(delay_ms)}
        if language and language.strip():
            update["language"] = to_iso639_2t(language)

        updated = []
        new_tracks = []
        for t in self.tracks:
            if t.key in selected:
                t = t.model_copy(update=update)
                updated.append(t)
            new_tracks.append(t)
        self.tracks = new_tracks

        logger.info(f"Applied options to {len(updated)} selected track(s).")
        return updated

    def set_included(self, keys: Iterable[TrackKey], included: bool):
        selected = {tuple(k) for k in keys}
        self.tracks = [t.model_copy(update={"is_included": included}) if t.key in selected else t
                       for t in self.tracks]

    def included_tracks(self) -> List[TrackDescriptor]:
        return [t for t in self.tracks if t.is_included]

    def prepare_remux(self, container_ext: str, output_dir: Optional[str] = None,
                      suffix: str = "_remux") -> RemuxPlan:
        """
        Validates the request, filters tracks for the container and builds the
        ffmpeg arguments. Raises InputValidationError before anything runs.
        """
        primary = self.input_files[0] if self.input_files else None
        if not primary or not os.path.isfile(primary):
            raise InputValidationError("Please select a valid input file.")

        selected = self.included_tracks()
        if not selected:
            raise InputValidationError("Please check at least one track to include.")

        container = normalize_container(container_ext)
        if not container:
            raise InputValidationError("Please choose an output container (MP4/MKV/MOV).")
        if container not in SUPPORTED_CONTAINERS:
            raise InputValidationError(f"Unsupported container: .{container}")

        accepted, rejected = filter_by_container(selected, container)
        report = format_plan_report(container, accepted, rejected)
        for r in rejected:
            logger.info(f"Excluded {r.label}: {r.reject_reason}")

        if not accepted:
            raise InputValidationError("No compatible tracks for the selected container.", rejected=rejected)

        out_dir = output_dir or default_output_dir(primary)
        output_path = output_path_for(primary, out_dir, suffix, container)

        duration = self.primary_info.duration_seconds if self.primary_info else 0.0
        if duration <= 0:
            duration = FALLBACK_DURATION_SECONDS

        arguments = build_remux_plan(self.input_files, accepted, output_path)
        return RemuxPlan(
            container=container,
            arguments=arguments,
            output_path=output_path,
            accepted=accepted,
            rejected=rejected,
            report=report,
            total_duration=duration,
        )

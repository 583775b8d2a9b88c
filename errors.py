from typing import List, Optional


class RemuxPlannerError(Exception):
    """Base error for remux planning and ffmpeg execution."""


class InputValidationError(RemuxPlannerError):
    """Raised before any process launch when the requested operation is not valid.

    ``rejected`` carries tracks excluded by container filtering so the caller
    can still show why nothing was left to remux.
    """

    def __init__(self, message: str, rejected: Optional[List] = None):
        super().__init__(message)
        self.rejected = list(rejected or [])


class ProbeError(RemuxPlannerError):
    """Raised when ffprobe fails or returns data that is not a JSON object."""


class ToolNotFoundError(RemuxPlannerError, FileNotFoundError):
    """Raised when ffmpeg or ffprobe cannot be located."""

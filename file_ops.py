import os
import re
from typing import Optional
from logger import setup_logger

logger = setup_logger()

# Characters refused in file names on at least one target OS (Windows is the strictest)
_INVALID_FILE_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def make_safe_file_name(name: str) -> str:
    return _INVALID_FILE_NAME_CHARS.sub("_", name)


def default_output_dir(input_path: str) -> str:
    """
    Defaults output to the input file's folder, or the working directory.
    """
    return os.path.dirname(os.path.abspath(input_path)) if input_path else os.getcwd()


def ensure_output_dir(path: Optional[str]) -> bool:
    """
    Best-effort directory creation. Failure is logged, not raised:
    ffmpeg reports the real error if it cannot write the output.
    """
    if not path:
        return False
    try:
        os.makedirs(path, exist_ok=True)
        return True
    except OSError as e:
        logger.warning(f"Could not create output directory {path}: {e}")
        return False


def output_path_for(input_path: str, output_dir: str, suffix: str, ext: str) -> str:
    base_name = os.path.splitext(os.path.basename(input_path))[0]
    return os.path.join(output_dir, f"{make_safe_file_name(base_name)}{suffix}.{ext}")

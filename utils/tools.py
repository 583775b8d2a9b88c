import os
import shutil
import sys
from typing import Optional
from errors import ToolNotFoundError
from logger import setup_logger

logger = setup_logger()


def resolve_tool(name: str, configured_path: Optional[str] = None, tools_dir: Optional[str] = None) -> str:
    """
    Locates an ffmpeg-suite executable: explicit config first, then PATH,
    then a bundled copy under `tools_dir`.
    """
    if configured_path:
        if os.path.isfile(configured_path):
            return configured_path
        found = shutil.which(configured_path)
        if found:
            return found
        logger.warning(f"Configured {name} path not usable: {configured_path}")

    found = shutil.which(name)
    if found:
        return found

    if tools_dir:
        exe_name = name + (".exe" if sys.platform.startswith("win") else "")
        for candidate in (os.path.join(tools_dir, exe_name), os.path.join(tools_dir, "bin", exe_name)):
            if os.path.isfile(candidate):
                return candidate

    logger.error(f"{name} not found in system PATH")
    raise ToolNotFoundError(f"{name} not found in PATH or local tools folder. Please install FFmpeg.")

import logging
import subprocess
from pathlib import Path

class FFprobeAdapter:
    """Wrapper around ffprobe used to verify encoded candidates."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def is_valid_video(self, file_path: Path) -> bool:
        """True if the first video stream reports a non-zero width and height."""
        cmd = [
            "ffprobe",
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height",
            "-of", "csv=p=0",
            str(file_path),
        ]
        self.logger.debug(f"FFPROBE_CMD: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            self.logger.warning(f"ffprobe could not be executed: {e}")
            return False
        if result.returncode != 0:
            return False

        first_line = result.stdout.strip().split("\n")[0].strip()
        parts = first_line.split(",")
        if len(parts) < 2:
            return False
        try:
            width, height = int(parts[0]), int(parts[1])
        except ValueError:
            return False
        return width > 0 and height > 0

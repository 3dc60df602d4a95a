import logging
import os
from pathlib import Path

class HousekeepingService:
    """Removes probe candidates left behind by an interrupted run."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def cleanup_temp_files(self, directory: Path) -> int:
        """Recursively removes all .tmp files in the directory. Returns the count removed."""
        removed = 0
        if not directory.exists():
            return removed
        for root, dirs, files in os.walk(directory):
            for file in files:
                if file.endswith(".tmp"):
                    try:
                        (Path(root) / file).unlink()
                        removed += 1
                    except OSError as e:
                        self.logger.warning(f"Failed to remove stale temp file {Path(root) / file}: {e}")
        if removed:
            self.logger.info(f"HOUSEKEEPING: removed {removed} stale temp files from {directory}")
        return removed

import logging
import os
from pathlib import Path
from typing import Iterable, List, Generator, Optional
from av1q.domain.errors import DiscoveryError
from av1q.domain.models import DiscoveryWarningEntry, MediaFile

def media_file_for(path: Path) -> MediaFile:
    """Describes one file; raises OSError if it cannot be stat-ed."""
    stat = path.stat()
    return MediaFile(
        path=path,
        container=path.suffix.lower().lstrip("."),
        size_bytes=stat.st_size,
        mtime=stat.st_mtime,
    )


class FileScanner:
    """Recursively scans a directory tree for media files in lexicographic order.

    Each call to scan() starts a fresh walk, so the sequence is restartable.
    Directories listed in `exclude_dirs` (the output tree) are never entered.
    """

    def __init__(self, extensions: List[str], min_size_bytes: int = 0, exclude_dirs: Optional[Iterable[Path]] = None):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.min_size_bytes = min_size_bytes
        self.exclude_dirs = {Path(p).resolve() for p in (exclude_dirs or [])}
        self.warnings: List[DiscoveryWarningEntry] = []
        self.logger = logging.getLogger(__name__)

    def _warn(self, path: Path, message: str):
        self.warnings.append(DiscoveryWarningEntry(path=path, message=message))
        self.logger.warning(f"DISCOVERY_WARNING: {path}: {message}")

    def _on_walk_error(self, error: OSError):
        self._warn(Path(error.filename or "?"), error.strerror or str(error))

    def scan(self, root_dir: Path) -> Generator[MediaFile, None, None]:
        """Scans the directory and yields MediaFile objects."""
        root_dir = Path(root_dir).resolve()
        if not root_dir.is_dir():
            raise DiscoveryError(f"Input directory does not exist or is not a directory: {root_dir}")
        if not os.access(root_dir, os.R_OK | os.X_OK):
            raise DiscoveryError(f"Input directory is not readable: {root_dir}")

        self.warnings = []
        for root, dirs, files in os.walk(str(root_dir), onerror=self._on_walk_error):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs[:] = sorted(d for d in dirs if (root_path / d).resolve() not in self.exclude_dirs)
            files.sort()

            for file_name in files:
                file_path = root_path / file_name

                if file_path.suffix.lower() not in self.extensions:
                    continue

                try:
                    media = media_file_for(file_path)
                except OSError as e:
                    self._warn(file_path, e.strerror or str(e))
                    continue
                if not os.access(file_path, os.R_OK):
                    self._warn(file_path, "not readable")
                    continue

                if media.size_bytes < self.min_size_bytes:
                    continue

                yield media

import os
import pytest
from pathlib import Path
from unittest.mock import patch
from av1q.domain.errors import DiscoveryError
from av1q.infrastructure.file_scanner import FileScanner, media_file_for

def test_file_scanner_basic(tmp_path):
    (tmp_path / "video1.mp4").write_text("dummy")
    (tmp_path / "video2.MOV").write_text("dummy content")
    (tmp_path / "subdir").mkdir()
    (tmp_path / "subdir" / "video3.avi").write_text("dummy avi")
    (tmp_path / "ignored.txt").write_text("ignore me")

    scanner = FileScanner(extensions=["mp4", ".mov", ".AVI"])
    files = list(scanner.scan(tmp_path))

    paths = {f.path.name for f in files}
    assert paths == {"video1.mp4", "video2.MOV", "video3.avi"}
    assert scanner.warnings == []

def test_file_scanner_lexicographic_order(tmp_path):
    for name in ["b.mp4", "a.mp4", "c.mp4"]:
        (tmp_path / name).write_text("x")
    (tmp_path / "a_dir").mkdir()
    (tmp_path / "a_dir" / "z.mp4").write_text("x")

    files = list(FileScanner(extensions=[".mp4"]).scan(tmp_path))

    assert [f.path.relative_to(tmp_path.resolve()).as_posix() for f in files] == [
        "a.mp4", "b.mp4", "c.mp4", "a_dir/z.mp4",
    ]

def test_file_scanner_scan_is_restartable(tmp_path):
    (tmp_path / "a.mp4").write_text("x")
    scanner = FileScanner(extensions=[".mp4"])

    first = [f.path for f in scanner.scan(tmp_path)]
    second = [f.path for f in scanner.scan(tmp_path)]
    assert first == second

def test_file_scanner_media_file_fields(tmp_path):
    f = tmp_path / "clip.MKV"
    f.write_bytes(b"12345")

    media = media_file_for(f)
    assert media.container == "mkv"
    assert media.size_bytes == 5
    assert media.mtime == pytest.approx(f.stat().st_mtime)

def test_file_scanner_min_size(tmp_path):
    (tmp_path / "small.mp4").write_text("a")
    (tmp_path / "large.mp4").write_text("large content")

    scanner = FileScanner(extensions=[".mp4"], min_size_bytes=10)
    paths = {f.path.name for f in scanner.scan(tmp_path)}

    assert paths == {"large.mp4"}

def test_file_scanner_excludes_output_dir(tmp_path):
    (tmp_path / "video.mp4").write_text("data")
    out_dir = tmp_path / "encoded"
    out_dir.mkdir()
    (out_dir / "video.mkv").write_text("data")

    scanner = FileScanner(extensions=[".mp4", ".mkv"], exclude_dirs=[out_dir])
    paths = {f.path.name for f in scanner.scan(tmp_path)}

    assert paths == {"video.mp4"}

def test_file_scanner_missing_root_raises(tmp_path):
    scanner = FileScanner(extensions=[".mp4"])
    with pytest.raises(DiscoveryError):
        list(scanner.scan(tmp_path / "missing"))

def test_file_scanner_file_as_root_raises(tmp_path):
    f = tmp_path / "a.mp4"
    f.write_text("x")
    with pytest.raises(DiscoveryError):
        list(FileScanner(extensions=[".mp4"]).scan(f))

def test_file_scanner_unreadable_root_raises(tmp_path):
    with patch("av1q.infrastructure.file_scanner.os.access", return_value=False):
        with pytest.raises(DiscoveryError, match="not readable"):
            list(FileScanner(extensions=[".mp4"]).scan(tmp_path))

def test_file_scanner_stat_failure_becomes_warning(tmp_path):
    (tmp_path / "good.mp4").write_text("x")
    (tmp_path / "bad.mp4").write_text("x")
    real_media_file_for = media_file_for

    def flaky(path):
        if path.name == "bad.mp4":
            raise PermissionError(13, "Permission denied", str(path))
        return real_media_file_for(path)

    scanner = FileScanner(extensions=[".mp4"])
    with patch("av1q.infrastructure.file_scanner.media_file_for", side_effect=flaky):
        paths = [f.path.name for f in scanner.scan(tmp_path)]

    assert paths == ["good.mp4"]
    assert len(scanner.warnings) == 1
    assert scanner.warnings[0].path.name == "bad.mp4"
    assert "Permission denied" in scanner.warnings[0].message

def test_file_scanner_warnings_reset_per_scan(tmp_path):
    scanner = FileScanner(extensions=[".mp4"])
    scanner.warnings.append("stale")
    list(scanner.scan(tmp_path))
    assert scanner.warnings == []

@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="requires POSIX permissions as non-root")
def test_file_scanner_unreadable_file_is_excluded(tmp_path):
    locked = tmp_path / "locked.mp4"
    locked.write_text("x")
    (tmp_path / "open.mp4").write_text("x")
    locked.chmod(0)
    try:
        scanner = FileScanner(extensions=[".mp4"])
        paths = [f.path.name for f in scanner.scan(tmp_path)]
    finally:
        locked.chmod(0o644)

    assert paths == ["open.mp4"]
    assert [w.path.name for w in scanner.warnings] == ["locked.mp4"]

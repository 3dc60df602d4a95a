import threading
import pytest
import yaml
from pathlib import Path
from av1q.config.models import AppConfig
from av1q.domain.errors import EncoderError, ScorerError
from av1q.domain.models import JobSpec, SearchParams, EncoderPreset
from av1q.infrastructure.event_bus import EventBus
from av1q.infrastructure.file_scanner import media_file_for

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "threads": 2,
            "extensions": [".mp4", ".mov", ".mkv"],
            "min_size_bytes": 0,
            "verify_outputs": False,
            "interrupt_grace_s": 5.0,
            "debug": False,
        },
        search={
            "tolerance": 1.0,
            "max_iterations": 5,
            "initial_cq": 32,
            "min_cq": 15,
            "max_cq": 50,
            "step": 4,
            "probe_retries": 2,
            "best_effort": False,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "av1q.yaml"

    content = {
        'general': {
            'threads': 3,
            'extensions': ['mp4', 'MOV'],
            'output_extension': 'mkv',
        },
        'search': {
            'tolerance': 0.5,
            'max_iterations': 6,
            'best_effort': True,
        },
        'presets': {
            '.webm': {'encoder': 'av1_nvenc', 'preset': 'p7'},
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir

@pytest.fixture
def dummy_video_files(test_input_dir):
    """Creates three dummy source files (one in a subdirectory) plus a non-media file."""
    files = []
    for name in ["a.mp4", "b.mov"]:
        f = test_input_dir / name
        f.write_bytes(b"dummy video content " * 200)  # ~4KB
        files.append(f)

    subdir = test_input_dir / "season1"
    subdir.mkdir()
    f = subdir / "c.mkv"
    f.write_bytes(b"dummy video content " * 200)
    files.append(f)

    (test_input_dir / "notes.txt").write_text("not a video")
    return files

@pytest.fixture
def make_spec(tmp_path):
    """Factory building a JobSpec for a real file under tmp_path."""
    def _make(name="movie.mp4", target=93.0, size=4000, **search):
        source = tmp_path / "src" / name
        source.parent.mkdir(parents=True, exist_ok=True)
        if not source.exists():
            source.write_bytes(b"s" * size)
        params = dict(tolerance=1.0, max_iterations=5, initial_cq=32, min_cq=15, max_cq=50, step=4)
        params.update(search)
        return JobSpec(
            source=media_file_for(source),
            output_path=tmp_path / "out" / Path(name).with_suffix(".mkv"),
            target_score=target,
            search=SearchParams(**params),
            preset=EncoderPreset(),
        )
    return _make

# ============================================================================
# External tool stubs
# ============================================================================

class StubEncoder:
    """Writes a fake candidate whose size shrinks as the quality parameter grows.

    fail_times: number of leading calls that raise EncoderError.
    on_encode: optional hook(source, quality_param, cancel_event) run before writing.
    """

    def __init__(self, fail_times=0, on_encode=None, size_for=None):
        self.calls = []
        self.fail_times = fail_times
        self.on_encode = on_encode
        self.size_for = size_for or (lambda cq: max(1, 1000 - cq * 10))
        self._lock = threading.Lock()

    def encode(self, source, output, quality_param, preset, cancel_event=None):
        with self._lock:
            self.calls.append((Path(source), quality_param))
            fail = self.fail_times > 0
            if fail:
                self.fail_times -= 1
        if self.on_encode is not None:
            self.on_encode(source, quality_param, cancel_event)
        if fail:
            raise EncoderError("ffmpeg exited with code 1", returncode=1)
        Path(output).write_bytes(b"e" * self.size_for(quality_param))


class StubScorer:
    """Returns scores in call order per source; the last score repeats once exhausted.

    scores: list of floats, or a callable(source, candidate) -> float.
    fail_times: number of leading calls that raise ScorerError.
    """

    def __init__(self, scores, fail_times=0):
        self.scores = scores
        self.fail_times = fail_times
        self.calls = []
        self._per_source = {}
        self._lock = threading.Lock()

    def score(self, reference, candidate, cancel_event=None):
        with self._lock:
            self.calls.append((Path(reference), Path(candidate)))
            if self.fail_times > 0:
                self.fail_times -= 1
                raise ScorerError("No VMAF score found in scorer output")
            if callable(self.scores):
                return self.scores(Path(reference), Path(candidate))
            index = self._per_source.get(reference, 0)
            self._per_source[reference] = index + 1
            return self.scores[min(index, len(self.scores) - 1)]


@pytest.fixture
def stub_encoder():
    return StubEncoder

@pytest.fixture
def stub_scorer():
    return StubScorer


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )

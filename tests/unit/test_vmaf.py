import pytest
from pathlib import Path
from unittest.mock import patch
from av1q.config.models import ScorerConfig
from av1q.domain.errors import ProbeCancelled, ScorerError
from av1q.infrastructure.vmaf import VmafScorer, parse_vmaf_score

RUN_PROCESS = "av1q.infrastructure.vmaf.run_process"


@pytest.mark.parametrize("output,expected", [
    ("[Parsed_libvmaf_0 @ 0x55d] VMAF score: 93.412345\n", 93.412345),
    ("VMAF score = 88.5\n", 88.5),
    ("VMAF score: 10.0\nVMAF score: 95\n", 95.0),
    ("frame=  100 fps=50\n", None),
])
def test_parse_vmaf_score(output, expected):
    assert parse_vmaf_score(output) == expected


def test_build_command_puts_distorted_first():
    cmd = VmafScorer()._build_command(Path("ref.mp4"), Path("cand.mkv.tmp"))
    inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
    assert inputs == ["cand.mkv.tmp", "ref.mp4"]
    assert cmd[cmd.index("-lavfi") + 1] == "[0:v][1:v]libvmaf"


def test_build_command_options():
    scorer = VmafScorer(ScorerConfig(n_threads=4, subsample=5, model="version=vmaf_v0.6.1"))
    cmd = scorer._build_command(Path("ref.mp4"), Path("cand.mkv"))
    assert cmd[cmd.index("-lavfi") + 1] == "[0:v][1:v]libvmaf=n_threads=4:n_subsample=5:model=version=vmaf_v0.6.1"


def test_score_success():
    with patch(RUN_PROCESS, return_value=(0, "VMAF score: 94.1\n")):
        assert VmafScorer().score(Path("ref.mp4"), Path("cand.mkv")) == 94.1


def test_score_nonzero_exit():
    with patch(RUN_PROCESS, return_value=(1, "No such filter: 'libvmaf'\n")):
        with pytest.raises(ScorerError) as exc_info:
            VmafScorer().score(Path("ref.mp4"), Path("cand.mkv"))
    assert exc_info.value.returncode == 1
    assert "libvmaf" in exc_info.value.output


def test_score_missing_from_output():
    with patch(RUN_PROCESS, return_value=(0, "frame=1\n")):
        with pytest.raises(ScorerError, match="No VMAF score"):
            VmafScorer().score(Path("ref.mp4"), Path("cand.mkv"))


def test_score_outside_range():
    with patch(RUN_PROCESS, return_value=(0, "VMAF score: 140.0\n")):
        with pytest.raises(ScorerError, match="outside"):
            VmafScorer().score(Path("ref.mp4"), Path("cand.mkv"))


def test_score_missing_binary():
    with patch(RUN_PROCESS, side_effect=FileNotFoundError(2, "No such file", "ffmpeg")):
        with pytest.raises(ScorerError, match="could not be executed"):
            VmafScorer().score(Path("ref.mp4"), Path("cand.mkv"))


def test_score_cancellation_propagates():
    with patch(RUN_PROCESS, side_effect=ProbeCancelled()):
        with pytest.raises(ProbeCancelled):
            VmafScorer().score(Path("ref.mp4"), Path("cand.mkv"))

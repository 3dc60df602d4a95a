import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from pydantic import ValidationError
from av1q.domain.models import (
    BatchState, BatchSummary, EncoderPreset, FailureReason, JobOutcome,
    OutcomeStatus, QualityProbe,
)

def test_job_spec_is_immutable(make_spec):
    spec = make_spec()
    with pytest.raises(ValidationError):
        spec.target_score = 50.0

def test_quality_probe_ok():
    assert QualityProbe(quality_param=30, score=91.0).ok
    assert not QualityProbe(quality_param=30, error="encoder: boom").ok
    assert not QualityProbe(quality_param=30).ok

@pytest.mark.parametrize("encoder,flag", [
    ("libsvtav1", "-crf"),
    ("libaom-av1", "-crf"),
    ("av1_nvenc", "-cq"),
])
def test_encoder_preset_quality_flag(encoder, flag):
    assert EncoderPreset(encoder=encoder).quality_flag == flag

def test_outcome_constructors(make_spec):
    spec = make_spec()
    probe = QualityProbe(quality_param=28, score=93.2, size_bytes=720)

    ok = JobOutcome.succeeded(spec, probe, 2, [probe])
    assert ok.status == OutcomeStatus.SUCCEEDED
    assert ok.output_path == spec.output_path
    assert ok.reason is None

    failed = JobOutcome.failed(spec, FailureReason.QUALITY_NOT_REACHED, "nope", 5, best=probe)
    assert failed.score == 93.2
    assert failed.quality_param == 28
    assert failed.output_path is None

    skipped = JobOutcome.skipped(spec)
    assert skipped.status == OutcomeStatus.SKIPPED
    assert skipped.message == "already satisfied"

def test_batch_state_record_strips_probes(make_spec):
    spec = make_spec()
    probe = QualityProbe(quality_param=28, score=93.2)
    state = BatchState()

    assert state.record(JobOutcome.succeeded(spec, probe, 1, [probe]), datetime(2024, 1, 1))
    entry = state.get(spec.source.path)
    assert entry.outcome.probes == []
    assert entry.outcome.score == 93.2

def test_batch_state_last_run_wins(make_spec):
    spec = make_spec()
    state = BatchState()
    first = datetime(2024, 1, 1)
    older_outcome = JobOutcome.failed(spec, FailureReason.ENCODER_ERROR, "boom")
    newer_outcome = JobOutcome.succeeded(spec, QualityProbe(quality_param=30, score=93.0), 1, [])

    state.record(newer_outcome, first + timedelta(hours=1))
    assert not state.record(older_outcome, first)
    assert not state.record(older_outcome, first + timedelta(hours=1))
    assert state.get(spec.source.path).outcome.status == OutcomeStatus.SUCCEEDED

    assert state.record(older_outcome, first + timedelta(hours=2))
    assert state.get(spec.source.path).outcome.reason == FailureReason.ENCODER_ERROR

def test_batch_state_is_satisfied_requires_output(make_spec):
    spec = make_spec()
    state = BatchState()
    state.record(JobOutcome.succeeded(spec, QualityProbe(quality_param=30, score=93.0), 1, []), datetime.now())

    assert not state.is_satisfied(spec.source.path, spec.output_path)
    spec.output_path.parent.mkdir(parents=True)
    spec.output_path.write_bytes(b"x")
    assert state.is_satisfied(spec.source.path, spec.output_path)

def test_batch_state_failed_entry_is_not_satisfied(make_spec):
    spec = make_spec()
    spec.output_path.parent.mkdir(parents=True)
    spec.output_path.write_bytes(b"x")
    state = BatchState()
    state.record(JobOutcome.failed(spec, FailureReason.QUALITY_NOT_REACHED, "x"), datetime.now())

    assert not state.is_satisfied(spec.source.path, spec.output_path)
    assert not BatchState().is_satisfied(Path("/nowhere.mp4"), spec.output_path)

def test_batch_summary_total():
    summary = BatchSummary(succeeded=2, failed=1, skipped=3, not_started=4)
    assert summary.total == 6

def test_batch_state_compares_naive_and_aware_run_times(make_spec):
    spec = make_spec()
    state = BatchState()
    outcome = JobOutcome.failed(spec, FailureReason.ENCODER_ERROR, "boom")
    state.record(outcome, datetime(2024, 1, 1, 12, 0))

    assert state.record(outcome, datetime(2030, 1, 1, tzinfo=timezone.utc))
    assert not state.record(outcome, datetime(2020, 1, 1, tzinfo=timezone.utc))

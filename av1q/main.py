import signal
import typer
from pathlib import Path
from typing import Optional
from rich.console import Console

from av1q.config.loader import load_config
from av1q.config.models import AppConfig
from av1q.domain.errors import ConfigurationError, DiscoveryError
from av1q.domain.events import InterruptRequested
from av1q.domain.models import OutcomeStatus
from av1q.infrastructure.event_bus import EventBus
from av1q.infrastructure.ffmpeg import FFmpegEncoder
from av1q.infrastructure.ffprobe import FFprobeAdapter
from av1q.infrastructure.file_scanner import FileScanner, media_file_for
from av1q.infrastructure.housekeeping import HousekeepingService
from av1q.infrastructure.logging import setup_logging
from av1q.infrastructure.state_store import StateStore
from av1q.infrastructure.vmaf import VmafScorer
from av1q.pipeline.driver import QualityDriver
from av1q.pipeline.jobs import JobBuilder, default_failed_dir, default_output_dir
from av1q.pipeline.orchestrator import Orchestrator
from av1q.pipeline.tracker import ProgressTracker
from av1q.ui.report import render_outcome, render_probes, render_summary

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

STATE_FILE_NAME = ".av1q-state.json"

app = typer.Typer(help="av1q - batch AV1 encoding to a target perceptual quality (VMAF)")
console = Console()


def _fail(message: str, code: int):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _load(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        _fail(str(e), EXIT_CONFIG_ERROR)


def _output_dir(config: AppConfig, root: Path, override: Optional[Path]) -> Path:
    if override is not None:
        return override.resolve()
    if config.general.output_dir:
        return Path(config.general.output_dir).expanduser().resolve()
    return default_output_dir(root)


def _build_driver(config: AppConfig, bus: Optional[EventBus] = None) -> QualityDriver:
    ffprobe = FFprobeAdapter() if config.general.verify_outputs else None
    return QualityDriver(
        encoder=FFmpegEncoder(ffprobe=ffprobe, debug=config.general.debug),
        scorer=VmafScorer(config.scorer, debug=config.general.debug),
        event_bus=bus,
        probe_retries=config.search.probe_retries,
        debug=config.general.debug,
    )


@app.command("all")
def run_all(
    root: Path = typer.Argument(..., help="Directory tree to encode"),
    target: float = typer.Argument(..., help="Target quality score (e.g. VMAF 93)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Output root (default: <root>_out)"),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Override number of concurrent jobs"),
    tolerance: Optional[float] = typer.Option(None, "--tolerance", min=0.0, help="Accepted distance from target score"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", min=1, help="Probe budget per file"),
    best_effort: Optional[bool] = typer.Option(None, "--best-effort/--no-best-effort", help="Keep the closest candidate when the budget runs out"),
    force: bool = typer.Option(False, "--force", help="Re-encode files already recorded as succeeded"),
    stop_on_error: bool = typer.Option(False, "--stop-on-error", help="Stop starting new jobs after the first failure"),
    move_failed_files: bool = typer.Option(False, "--move-failed-files", help="Move sources of failed jobs to <output_dir>/failed"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Encode every media file under ROOT to TARGET quality, skipping files done by earlier runs."""
    config = _load(config_path)
    # Apply CLI overrides
    if threads: config.general.threads = threads
    if tolerance is not None: config.search.tolerance = tolerance
    if max_iterations: config.search.max_iterations = max_iterations
    if best_effort is not None: config.search.best_effort = best_effort
    if force: config.general.force = True
    if stop_on_error: config.general.stop_on_error = True
    if move_failed_files: config.general.move_failed_files = True
    if log_path is not None: config.general.log_path = str(log_path)
    if debug: config.general.debug = True

    root = root.expanduser().resolve()
    if not root.is_dir():
        _fail(f"Input directory does not exist: {root}", EXIT_CONFIG_ERROR)

    out_dir = _output_dir(config, root, output_dir)
    failed_dir = Path(config.general.failed_dir).expanduser().resolve() if config.general.failed_dir else default_failed_dir(out_dir)
    log_path_value = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(out_dir, debug=config.general.debug, log_path=log_path_value)
    logger.info(f"av1q started: root={root}, output_dir={out_dir}, target={target}")
    logger.info(
        f"Config: threads={config.general.threads}, tolerance={config.search.tolerance}, "
        f"max_iterations={config.search.max_iterations}, best_effort={config.search.best_effort}, "
        f"force={config.general.force}"
    )

    bus = EventBus()
    # SIGTERM aborts like Ctrl+C: stop submitting, cancel in-flight encodes
    previous_sigterm = signal.signal(signal.SIGTERM, lambda signum, frame: bus.publish(InterruptRequested()))

    try:
        HousekeepingService().cleanup_temp_files(out_dir)

        state_path = Path(config.general.state_file) if config.general.state_file else out_dir / STATE_FILE_NAME
        tracker = ProgressTracker(StateStore(state_path), event_bus=bus, console=console)
        scanner = FileScanner(
            extensions=config.general.extensions,
            min_size_bytes=config.general.min_size_bytes,
            exclude_dirs=[out_dir, failed_dir],
        )
        builder = JobBuilder(config, root, out_dir, target, failed_dir=failed_dir)
        orchestrator = Orchestrator(
            config=config,
            event_bus=bus,
            file_scanner=scanner,
            job_builder=builder,
            driver=_build_driver(config, bus),
            tracker=tracker,
        )
        summary = orchestrator.run(root)

    except (ConfigurationError, DiscoveryError) as e:
        logger.error(f"Configuration error: {e}")
        _fail(str(e), EXIT_CONFIG_ERROR)

    except KeyboardInterrupt:
        logger.info("Batch interrupted by user (Ctrl+C)")
        typer.secho("\nBatch interrupted by user (Ctrl+C); progress saved.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=EXIT_INTERRUPTED)

    finally:
        signal.signal(signal.SIGTERM, previous_sigterm)

    render_summary(console, summary)
    logger.info(
        f"Batch finished: succeeded={summary.succeeded}, failed={summary.failed}, "
        f"skipped={summary.skipped}, not_started={summary.not_started}, abandoned={summary.abandoned}"
    )
    if summary.interrupted:
        raise typer.Exit(code=EXIT_INTERRUPTED)
    if summary.failed:
        raise typer.Exit(code=EXIT_JOB_FAILED)


@app.command("single")
def run_single(
    video: Path = typer.Argument(..., help="Video file to encode"),
    target: float = typer.Argument(..., help="Target quality score"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Output directory (default: <parent>_out)"),
    debug: bool = typer.Option(True, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run the quality search for one file and print every probe. No state is read or written."""
    config = _load(config_path)
    if debug: config.general.debug = True

    video = video.expanduser().resolve()
    if not video.is_file():
        _fail(f"Video file does not exist: {video}", EXIT_CONFIG_ERROR)

    out_dir = _output_dir(config, video.parent, output_dir)
    setup_logging(out_dir, debug=config.general.debug)

    try:
        spec = JobBuilder(config, video.parent, out_dir, target).build(media_file_for(video))
    except ConfigurationError as e:
        _fail(str(e), EXIT_CONFIG_ERROR)

    try:
        outcome = _build_driver(config).run(spec)
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_INTERRUPTED)

    render_probes(console, outcome.probes, spec.target_score)
    render_outcome(console, outcome)
    if outcome.status != OutcomeStatus.SUCCEEDED:
        raise typer.Exit(code=EXIT_JOB_FAILED)


@app.command("force-cq")
def run_force_cq(
    video: Path = typer.Argument(..., help="Video file to encode"),
    cq: int = typer.Argument(..., min=0, max=63, help="Fixed quality parameter (CRF/CQ)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Output directory (default: <parent>_out)"),
):
    """Encode one file at a fixed quality parameter without scoring."""
    config = _load(config_path)

    video = video.expanduser().resolve()
    if not video.is_file():
        _fail(f"Video file does not exist: {video}", EXIT_CONFIG_ERROR)

    out_dir = _output_dir(config, video.parent, output_dir)
    setup_logging(out_dir, debug=config.general.debug)

    # Target is irrelevant for a fixed encode; use the top of the scorer range
    spec = JobBuilder(config, video.parent, out_dir, config.scorer.score_max).build(media_file_for(video))
    if spec.output_path.exists():
        _fail(f"Output already exists: {spec.output_path}", EXIT_CONFIG_ERROR)

    try:
        outcome = _build_driver(config).encode_fixed(spec, cq)
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_INTERRUPTED)

    render_outcome(console, outcome)
    if outcome.status != OutcomeStatus.SUCCEEDED:
        raise typer.Exit(code=EXIT_JOB_FAILED)


if __name__ == "__main__":
    app()

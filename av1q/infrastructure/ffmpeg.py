import logging
import threading
import time
from pathlib import Path
from typing import List, Optional
from av1q.config.models import OUTPUT_MUXERS
from av1q.domain.errors import EncoderError
from av1q.domain.models import EncoderPreset
from av1q.infrastructure.ffprobe import FFprobeAdapter
from av1q.infrastructure.process import run_process


def muxer_for(output: Path, default: str = "matroska") -> str:
    """Candidates are written with a .tmp suffix, so the muxer is resolved from the real extension."""
    suffixes = [s.lower() for s in output.suffixes if s.lower() != ".tmp"]
    for suffix in reversed(suffixes):
        if suffix in OUTPUT_MUXERS:
            return OUTPUT_MUXERS[suffix]
    return default


class FFmpegEncoder:
    """Encodes AV1 candidates with ffmpeg (libsvtav1, libaom-av1 or av1_nvenc)."""

    def __init__(self, ffprobe: Optional[FFprobeAdapter] = None, debug: bool = False):
        self.ffprobe = ffprobe
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _build_command(self, source: Path, output: Path, quality_param: int, preset: EncoderPreset) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            "ffmpeg",
            "-y",  # Overwrite output files
            "-hide_banner",
            "-nostdin",
            "-i", str(source),
            "-map", "0:v:0",
            "-map", "0:a?",
            "-c:v", preset.encoder,
            "-preset", preset.preset,
            preset.quality_flag, str(quality_param),
        ]
        if preset.encoder.endswith("_nvenc"):
            cmd.extend(["-b:v", "0", "-rc", "vbr", "-tune", "hq"])
        cmd.extend(preset.extra_args)
        cmd.extend([
            "-c:a", preset.audio_codec,
            "-sn", "-dn",
            "-f", muxer_for(output),
            str(output),
        ])
        return cmd

    def encode(
        self,
        source: Path,
        output: Path,
        quality_param: int,
        preset: EncoderPreset,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        filename = source.name
        start_time = time.monotonic()
        cmd = self._build_command(source, output, quality_param, preset)
        self.logger.debug(f"ENCODER_CMD: {' '.join(cmd)}")

        try:
            returncode, out = run_process(cmd, cancel_event=cancel_event)
        except OSError as e:
            raise EncoderError(f"ffmpeg could not be executed: {e}") from e
        except BaseException:
            self._discard(output)
            raise

        elapsed = time.monotonic() - start_time
        if returncode != 0:
            self._discard(output)
            tail = out.strip().splitlines()[-1] if out.strip() else ""
            raise EncoderError(f"ffmpeg exited with code {returncode}: {tail}", returncode=returncode, output=out)
        if not output.exists() or output.stat().st_size == 0:
            self._discard(output)
            raise EncoderError(f"ffmpeg produced no output at {output}", returncode=returncode, output=out)
        if self.ffprobe is not None and not self.ffprobe.is_valid_video(output):
            self._discard(output)
            raise EncoderError(f"Encoded file is not a valid video: {output}", returncode=returncode, output=out)

        if self.debug:
            self.logger.info(f"ENCODER_END: {filename} cq={quality_param} elapsed={elapsed:.2f}s")

    def _discard(self, output: Path):
        try:
            output.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove failed candidate {output}: {e}")

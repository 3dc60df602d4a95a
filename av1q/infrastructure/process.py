import logging
import queue
import subprocess
import threading
from typing import List, Optional, Tuple
from av1q.domain.errors import ProbeCancelled

logger = logging.getLogger(__name__)


def run_process(
    cmd: List[str],
    cancel_event: Optional[threading.Event] = None,
    poll_interval: float = 0.1,
    kill_timeout: float = 3.0,
) -> Tuple[int, str]:
    """Runs an external tool, returning (returncode, combined stdout/stderr).

    The cancellation token is polled while the process runs; when it is set the
    process is terminated (killed after `kill_timeout`) and ProbeCancelled is raised.
    """
    process = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        universal_newlines=True,
        errors="replace",
        bufsize=1,
    )

    output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

    def _reader():
        if not process.stdout:
            output_queue.put(None)
            return
        for line in process.stdout:
            output_queue.put(line)
        output_queue.put(None)

    reader_thread = threading.Thread(target=_reader, daemon=True)
    reader_thread.start()

    lines: List[str] = []
    while True:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"PROCESS_CANCELLED: {cmd[0]} (pid {process.pid})")
            _terminate(process, kill_timeout)
            raise ProbeCancelled()

        try:
            line = output_queue.get(timeout=poll_interval)
        except queue.Empty:
            if process.poll() is not None and not reader_thread.is_alive():
                break
            continue

        if line is None:
            break
        lines.append(line)

    process.wait()
    return process.returncode, "".join(lines)


def _terminate(process: subprocess.Popen, kill_timeout: float):
    process.terminate()
    try:
        process.wait(timeout=kill_timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()

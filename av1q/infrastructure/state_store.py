import json
import logging
import os
import tempfile
from pathlib import Path
from pydantic import ValidationError
from av1q.domain.errors import ConfigurationError
from av1q.domain.models import BatchState

class StateStore:
    """JSON persistence for BatchState.

    A missing file is an empty state. Saves go to a temp file in the same
    directory followed by os.replace, so readers only ever see a complete file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)

    def load(self) -> BatchState:
        if not self.path.exists():
            self.logger.info(f"STATE_EMPTY: {self.path} (no previous run)")
            return BatchState()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = BatchState.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"State file {self.path} is unreadable or corrupt: {e}") from e
        self.logger.info(f"STATE_LOADED: {self.path} ({len(state.entries)} entries)")
        return state

    def save(self, state: BatchState):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = state.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        self.logger.info(f"STATE_SAVED: {self.path} ({len(state.entries)} entries)")

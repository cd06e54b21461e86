"""
Boulder State Storage
=====================

File-based persistence for boulders:

- the active record:  <dir>/.llm-router/boulder-state.json
- the history archive: <dir>/.llm-router/boulder-history/<timestamp>_<id>.json

I/O failures are logged and treated as a no-op; nothing here raises to the
caller because persistence failed.
"""

import json
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from llm_router.boulder.types import BoulderState, BoulderStateConfig, BoulderStatus, BoulderSummary
from llm_router.errors import PersistenceError

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def elapsed_ms_since(iso_timestamp: str) -> Optional[int]:
    try:
        started = datetime.fromisoformat(iso_timestamp)
    except (TypeError, ValueError):
        return None
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return int((datetime.now(timezone.utc) - started).total_seconds() * 1000)


class BoulderStorage:
    """Reads and writes boulder files for one working directory."""

    def __init__(self, directory: Path, config: Optional[BoulderStateConfig] = None):
        self.directory = Path(directory)
        self.config = config or BoulderStateConfig()

    @property
    def state_path(self) -> Path:
        return self.directory / self.config.state_file_path

    @property
    def history_dir(self) -> Path:
        return self.directory / self.config.history_dir

    # -------------------------------------------------------------------------
    # Active record
    # -------------------------------------------------------------------------

    def read(self) -> Optional[BoulderState]:
        """Read the active record. Missing or invalid files yield None."""
        if not self.state_path.exists():
            return None
        try:
            return self._read_file(self.state_path, check_version=True)
        except PersistenceError as e:
            logger.error("Failed to read boulder state: %s", e)
            return None

    def _read_file(self, path: Path, check_version: bool = False) -> Optional[BoulderState]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(str(path), e) from e

        if not isinstance(data, dict) or not all(
            data.get(k) for k in ("id", "request", "status", "currentPhase")
        ):
            logger.warning("Invalid boulder state file %s: missing required fields", path)
            return None

        if check_version and data.get("version") != self.config.state_version:
            logger.warning(
                "Boulder state version mismatch (file %s, expected %s); migration may be needed",
                data.get("version"), self.config.state_version,
            )

        try:
            return BoulderState.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Invalid boulder state file %s: %s", path, e)
            return None

    def write(self, state: BoulderState) -> bool:
        """Write the active record, stamping updated_at."""
        state.updated_at = utc_now()
        try:
            self._write_file(self.state_path, state)
        except PersistenceError as e:
            logger.error("Failed to write boulder state: %s", e)
            return False
        logger.debug("Boulder %s written (%s, %s)", state.id, state.status.value, state.current_phase.value)
        return True

    @staticmethod
    def _write_file(path: Path, state: BoulderState) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(str(path), e) from e

    def clear(self) -> bool:
        """Delete the active record."""
        try:
            self.state_path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error("Failed to clear boulder state %s: %s", self.state_path, e)
            return False
        logger.debug("Boulder state cleared")
        return True

    def has_active(self) -> bool:
        """True if the active record is active or crashed."""
        state = self.read()
        return state is not None and state.status in (BoulderStatus.ACTIVE, BoulderStatus.CRASHED)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def archive(self, state: BoulderState) -> bool:
        """Copy a finished boulder into history, then prune history."""
        if not state.completed_at:
            state.completed_at = utc_now()
        if state.total_time_ms is None and state.created_at:
            state.total_time_ms = elapsed_ms_since(state.created_at)

        stamp = utc_now().replace(":", "-").replace(".", "-")
        archive_path = self.history_dir / f"{stamp}_{state.id}.json"
        try:
            self._write_file(archive_path, state)
        except PersistenceError as e:
            logger.error("Failed to archive boulder %s: %s", state.id, e)
            return False

        logger.info("Boulder %s archived to history (%s)", state.id, state.status.value)
        self.cleanup_history()
        return True

    def _history_files(self) -> List[Path]:
        if not self.history_dir.exists():
            return []
        return [p for p in self.history_dir.iterdir() if p.suffix == ".json"]

    def cleanup_history(self) -> int:
        """Remove history beyond max count or older than the retention window."""
        try:
            files = sorted(
                ((p, p.stat().st_mtime) for p in self._history_files()),
                key=lambda item: item[1],
                reverse=True,
            )
        except OSError as e:
            logger.warning("Failed to scan boulder history: %s", e)
            return 0

        cutoff = time.time() - self.config.history_retention_seconds
        removed = 0
        for index, (path, mtime) in enumerate(files):
            if index >= self.config.max_history_count or mtime < cutoff:
                try:
                    path.unlink()
                    removed += 1
                    logger.debug("Removed old boulder history %s", path.name)
                except OSError as e:
                    logger.warning("Could not remove boulder history %s: %s", path.name, e)
        return removed

    def list_summaries(self) -> List[BoulderSummary]:
        """Active record first, then newest history entries."""
        summaries = []
        current = self.read()
        if current is not None:
            summaries.append(BoulderSummary.from_state(current))

        try:
            files = sorted((p.name for p in self._history_files()), reverse=True)
        except OSError as e:
            logger.warning("Failed to list boulder history: %s", e)
            return summaries

        for name in files[: self.config.history_list_limit]:
            try:
                state = self._read_file(self.history_dir / name)
            except PersistenceError as e:
                logger.debug("Skipping unreadable history file: %s", e)
                continue
            if state is not None:
                summaries.append(BoulderSummary.from_state(state))
        return summaries

    def find(self, boulder_id: str) -> Optional[BoulderState]:
        """Look up a boulder by id in the active record, then history."""
        current = self.read()
        if current is not None and current.id == boulder_id:
            return current

        try:
            names = sorted((p.name for p in self._history_files()), reverse=True)
        except OSError as e:
            logger.warning("Failed to read boulder %s from history: %s", boulder_id, e)
            return None

        suffix = f"_{boulder_id}.json"
        for name in names:
            if not name.endswith(suffix):
                continue
            try:
                return self._read_file(self.history_dir / name)
            except PersistenceError as e:
                logger.warning("Failed to read boulder %s from history: %s", boulder_id, e)
                return None
        return None

    # -------------------------------------------------------------------------
    # Crash detection
    # -------------------------------------------------------------------------

    def detect_crashed(self) -> Optional[BoulderState]:
        """
        A record still `active` on startup belongs to a dead process: flip it
        to `crashed` and persist. Already-crashed records are returned as-is.
        """
        state = self.read()
        if state is None:
            return None

        if state.status == BoulderStatus.ACTIVE:
            state.status = BoulderStatus.CRASHED
            state.crashed_at = utc_now()
            self.write(state)
            logger.info(
                "Detected crashed boulder %s from previous session (phase %s, %d attempts)",
                state.id, state.current_phase.value, state.attempts_made,
            )
            return state

        if state.status == BoulderStatus.CRASHED:
            return state

        return None

"""
Checkpoint Manager — exported runtime state on disk.

The runtime's ``export_state()`` document is wrapped in a ``StateCheckpoint``
and written as gzip-compressed JSON. On the next start the CLI can resume
from the newest checkpoint instead of a cold start.

Storage: gzip-compressed JSON in aria_data/checkpoints/
Atomic writes via tempfile + rename to prevent corruption.
"""

from __future__ import annotations

import gzip
import json
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)


class StateCheckpoint(BaseModel):
    """One saved runtime state document plus bookkeeping."""

    checkpoint_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: float = Field(default_factory=time.time)
    agent_name: str = ""
    interactions: int = 0
    state: dict[str, Any] = Field(default_factory=dict)

    aria_version: str = ""
    checkpoint_format_version: int = 1


class CheckpointManager:
    """Writes, lists, prunes and loads state checkpoints."""

    def __init__(self, checkpoint_dir: Path, max_checkpoints: int = 10) -> None:
        self._checkpoint_dir = Path(checkpoint_dir)
        self._max_checkpoints = max(1, max_checkpoints)

    @property
    def directory(self) -> Path:
        return self._checkpoint_dir

    def build(self, state: dict[str, Any]) -> StateCheckpoint:
        """Wrap an exported state document."""
        from aria import __version__

        config = state.get("config") or {}
        performance = state.get("performance") or {}
        return StateCheckpoint(
            agent_name=str(config.get("name", "")),
            interactions=int(performance.get("total_interactions", 0)),
            state=state,
            aria_version=__version__,
        )

    async def save_checkpoint(self, checkpoint: StateCheckpoint) -> Path:
        """Write checkpoint to disk as compressed JSON.

        Uses atomic write (tempfile + rename). Prunes old checkpoints beyond
        max_checkpoints (keep newest).
        """
        self._checkpoint_dir.mkdir(parents=True, exist_ok=True)

        # YYYYMMDD-HHMMSS-{4hex}.json.gz
        dt = datetime.fromtimestamp(checkpoint.timestamp, tz=timezone.utc)
        filename = f"{dt.strftime('%Y%m%d-%H%M%S')}-{checkpoint.checkpoint_id[:4]}.json.gz"
        target = self._checkpoint_dir / filename

        compressed = gzip.compress(checkpoint.model_dump_json().encode("utf-8"), compresslevel=6)

        fd, tmp_path = tempfile.mkstemp(dir=str(self._checkpoint_dir), suffix=".tmp")
        try:
            with open(fd, "wb") as f:
                f.write(compressed)
            Path(tmp_path).replace(target)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.info(
            "checkpoint.saved",
            checkpoint_id=checkpoint.checkpoint_id,
            interactions=checkpoint.interactions,
            size_bytes=len(compressed),
            path=str(target),
        )

        self._prune_old_checkpoints()
        return target

    async def load_latest_checkpoint(self) -> Optional[StateCheckpoint]:
        """Load the most recent readable checkpoint, or None if none exist."""
        for path in self._list_checkpoint_files():
            checkpoint = self._load_file(path)
            if checkpoint is not None:
                return checkpoint
        return None

    async def load_checkpoint(self, checkpoint_id: str) -> Optional[StateCheckpoint]:
        for path in self._list_checkpoint_files():
            checkpoint = self._load_file(path)
            if checkpoint and checkpoint.checkpoint_id == checkpoint_id:
                return checkpoint
        return None

    def list_checkpoints(self) -> list[dict[str, Any]]:
        """Checkpoint metadata, newest first."""
        result = []
        for path in self._list_checkpoint_files():
            try:
                with gzip.open(path, "rb") as f:
                    raw = json.loads(f.read())
            except (OSError, ValueError):
                logger.debug("checkpoint.list_parse_failed", path=str(path))
                continue
            result.append({
                "checkpoint_id": raw.get("checkpoint_id", ""),
                "timestamp": raw.get("timestamp", 0),
                "agent_name": raw.get("agent_name", ""),
                "interactions": raw.get("interactions", 0),
                "size_bytes": path.stat().st_size,
                "path": str(path),
            })
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _list_checkpoint_files(self) -> list[Path]:
        """Return checkpoint files sorted newest first."""
        if not self._checkpoint_dir.exists():
            return []
        return sorted(
            self._checkpoint_dir.glob("*.json.gz"),
            key=lambda p: (p.stat().st_mtime, p.name),
            reverse=True,
        )

    def _load_file(self, path: Path) -> Optional[StateCheckpoint]:
        try:
            with gzip.open(path, "rb") as f:
                raw = f.read()
            return StateCheckpoint.model_validate_json(raw)
        except Exception:
            logger.warning("checkpoint.load_failed", path=str(path), exc_info=True)
            return None

    def _prune_old_checkpoints(self) -> None:
        files = self._list_checkpoint_files()
        for old_file in files[self._max_checkpoints:]:
            try:
                old_file.unlink()
                logger.debug("checkpoint.pruned", path=str(old_file))
            except OSError:
                logger.debug("checkpoint.prune_failed", path=str(old_file))

"""Render output directory with TTL-based cleanup."""

import logging
import os
import time

logger = logging.getLogger(__name__)


class RenderOutputStore:
    """Manages the directory render backends write their artifacts into."""

    def __init__(self, output_dir: str, ttl_hours: int = 24):
        self._output_dir = output_dir
        os.makedirs(self._output_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def output_dir(self) -> str:
        return self._output_dir

    def default_result_path(self, job_id: str) -> str:
        """Where a backend that does not announce its artifact is expected to put it."""
        return os.path.join(self._output_dir, f"{job_id}_render.png")

    def read_artifact(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    def cleanup_expired(self) -> int:
        """Remove output files older than TTL. Returns count of removed files."""
        now = time.time()
        removed = 0
        if not os.path.exists(self._output_dir):
            return 0
        for entry in os.listdir(self._output_dir):
            path = os.path.join(self._output_dir, entry)
            if not os.path.isfile(path):
                continue
            if now - os.path.getmtime(path) > self._ttl_seconds:
                try:
                    os.remove(path)
                except FileNotFoundError:
                    continue
                removed += 1
        if removed:
            logger.info("Removed %d expired render output(s)", removed)
        return removed

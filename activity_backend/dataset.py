"""
Local persistence for the activity dataset.

FileBlobStore is a minimal key -> bytes store on disk; writes go to a temp file
in the same directory and are moved into place with os.replace, so a reader sees
either the old or the new document, never a partial one.
"""
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import DatasetNotFound

logger = logging.getLogger(__name__)


class FileBlobStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        return self.root / key

    def read(self, key: str) -> Optional[bytes]:
        try:
            return self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None

    def write(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class DatasetStore:
    """Owns the canonical activity collection (one JSON array) and the CSV export."""

    def __init__(
        self,
        blobs: FileBlobStore,
        dataset_key: str = "activities.json",
        csv_key: str = "activities.csv",
    ):
        self.blobs = blobs
        self.dataset_key = dataset_key
        self.csv_key = csv_key

    async def save(self, activities: List[Dict[str, Any]]) -> None:
        """Overwrite the stored dataset with the full collection."""
        payload = json.dumps(activities, indent=2).encode("utf-8")
        await asyncio.to_thread(self.blobs.write, self.dataset_key, payload)
        logger.info(f"Saved {len(activities)} activities to {self.blobs.path_for(self.dataset_key)}")

    async def load(self) -> List[Dict[str, Any]]:
        """Return the stored dataset verbatim. Raises DatasetNotFound if nothing was saved yet."""
        raw = await asyncio.to_thread(self.blobs.read, self.dataset_key)
        if raw is None:
            raise DatasetNotFound(f"{self.dataset_key} not found", "Save activities first via /strava/save-activities")
        activities = json.loads(raw)
        logger.debug(f"Loaded {len(activities)} activities from {self.blobs.path_for(self.dataset_key)}")
        return activities

    async def save_csv(self, text: str) -> None:
        await asyncio.to_thread(self.blobs.write, self.csv_key, text.encode("utf-8"))
        logger.info(f"Saved CSV export to {self.blobs.path_for(self.csv_key)}")

"""
Job record stores.

Stores one JSON file per job under ``{data_dir}/requests/{job_id}.json``.
Simple, transparent, easy to inspect.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from gatekeeper.domain.interfaces import IRecordStore
from gatekeeper.domain.models import Job
from gatekeeper.errors import RecordStoreError

logger = logging.getLogger(__name__)


class FileRecordStore(IRecordStore):
    """
    File-based job persistence.

    Directory structure:
    {data_dir}/requests/{job_id}.json
    """

    def __init__(self, data_dir: str = "data"):
        """
        Args:
            data_dir: Base directory; records live in its ``requests`` subfolder
        """
        self.base_dir = Path(data_dir) / "requests"
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_record_path(self, job_id: str) -> Path:
        """Build path to record file"""
        # Job ids are uuids; anything path-like is treated as unknown
        safe_id = Path(job_id).name
        return self.base_dir / f"{safe_id}.json"

    async def read(self, job_id: str) -> Optional[Job]:
        path = self._get_record_path(job_id)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Job.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error loading job record {job_id}: {e}")
            return None

    async def write(self, job_id: str, job: Job) -> None:
        """Replace the record atomically: write a temp file, then rename over the old one."""
        path = self._get_record_path(job_id)
        payload = job.model_dump(mode="json", by_alias=True)

        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.base_dir, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Error saving job record {job_id}: {e}")
            raise RecordStoreError(f"Could not persist job {job_id}: {e}") from e


class InMemoryRecordStore(IRecordStore):
    """In-memory implementation of IRecordStore."""

    def __init__(self):
        self._records: Dict[str, dict] = {}

    async def read(self, job_id: str) -> Optional[Job]:
        data = self._records.get(job_id)
        if data is None:
            return None
        # Hand out a fresh copy so callers cannot mutate the stored record
        return Job.model_validate(data)

    async def write(self, job_id: str, job: Job) -> None:
        self._records[job_id] = job.model_dump(mode="json", by_alias=True)
        logger.debug(f"Stored job {job_id} in state {job.state.value}")

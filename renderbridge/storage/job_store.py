"""Durable storage for render job records.

Records are addressed by job id. Every write is published atomically so a
reader, in this process or another one, sees either the previous record or
the complete new one.
"""

import glob
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from renderbridge.jobs.errors import CorruptRecord, JobAlreadyExists, JobNotFound
from renderbridge.jobs.models import JobRecord, JobStatus

logger = logging.getLogger(__name__)

Mutator = Callable[[JobRecord], JobRecord]

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _parse(job_id: str, raw: str) -> JobRecord:
    try:
        return JobRecord.from_json(raw)
    except (ValidationError, ValueError) as exc:
        reason = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
        raise CorruptRecord(job_id, reason) from exc


class JobStore(ABC):
    """Serialized access path to job records."""

    def __init__(self):
        self._lock = threading.RLock()

    @abstractmethod
    def create(self, record: JobRecord) -> None:
        """Persist a new record. Raises JobAlreadyExists on id collision."""
        ...

    @abstractmethod
    def read(self, job_id: str) -> JobRecord:
        """Return the current record. Raises JobNotFound or CorruptRecord."""
        ...

    @abstractmethod
    def _publish(self, record: JobRecord) -> None:
        """Atomically replace the stored record."""
        ...

    @abstractmethod
    def _job_ids(self) -> List[str]:
        ...

    def update(self, job_id: str, mutator: Mutator) -> JobRecord:
        """Read-modify-write a record.

        If the mutator raises, nothing is written and the exception propagates.
        Returning the record unchanged skips the write.
        """
        with self._lock:
            current = self.read(job_id)
            updated = mutator(current)
            if updated is current:
                return current
            if updated.job_id != job_id:
                raise ValueError(f"mutator changed job id {job_id} -> {updated.job_id}")
            self._publish(updated)
            return updated

    def list(self, status: Optional[JobStatus] = None) -> List[JobRecord]:
        records = []
        for job_id in self._job_ids():
            try:
                record = self.read(job_id)
            except (CorruptRecord, JobNotFound, OSError) as exc:
                logger.warning("Skipping job record %s: %s", job_id, exc)
                continue
            if status is not None and record.status != status:
                continue
            records.append(record)
        records.sort(key=lambda r: (r.created_at, r.job_id))
        return records


class FileJobStore(JobStore):
    """One ``<job_id>.json`` file per job inside ``jobs_dir``."""

    def __init__(self, jobs_dir: str):
        super().__init__()
        self._jobs_dir = jobs_dir
        os.makedirs(self._jobs_dir, exist_ok=True)

    @property
    def jobs_dir(self) -> str:
        return self._jobs_dir

    def _path(self, job_id: str) -> str:
        if not _JOB_ID_RE.match(job_id):
            raise JobNotFound(job_id)
        return os.path.join(self._jobs_dir, f"{job_id}.json")

    def _stage(self, record: JobRecord) -> str:
        fd, tmp_path = tempfile.mkstemp(
            dir=self._jobs_dir, prefix=f".{record.job_id}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.to_json())
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            os.unlink(tmp_path)
            raise
        return tmp_path

    def create(self, record: JobRecord) -> None:
        path = self._path(record.job_id)
        tmp_path = self._stage(record)
        try:
            # link() fails if the target exists, giving an exclusive atomic create
            os.link(tmp_path, path)
        except FileExistsError:
            raise JobAlreadyExists(record.job_id) from None
        finally:
            os.unlink(tmp_path)

    def read(self, job_id: str) -> JobRecord:
        path = self._path(job_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            raise JobNotFound(job_id) from None
        except UnicodeDecodeError as exc:
            raise CorruptRecord(job_id, str(exc)) from exc
        return _parse(job_id, raw)

    def _publish(self, record: JobRecord) -> None:
        tmp_path = self._stage(record)
        try:
            os.replace(tmp_path, self._path(record.job_id))
        except BaseException:
            os.unlink(tmp_path)
            raise

    def _job_ids(self) -> List[str]:
        pattern = os.path.join(self._jobs_dir, "*.json")
        return [
            os.path.splitext(os.path.basename(p))[0]
            for p in glob.glob(pattern)
        ]


class InMemoryJobStore(JobStore):
    """Process-local store keeping serialized records, for tests and embedding."""

    def __init__(self):
        super().__init__()
        self._records: Dict[str, str] = {}

    def create(self, record: JobRecord) -> None:
        with self._lock:
            if record.job_id in self._records:
                raise JobAlreadyExists(record.job_id)
            self._records[record.job_id] = record.to_json()

    def read(self, job_id: str) -> JobRecord:
        raw = self._records.get(job_id)
        if raw is None:
            raise JobNotFound(job_id)
        return _parse(job_id, raw)

    def _publish(self, record: JobRecord) -> None:
        self._records[record.job_id] = record.to_json()

    def _job_ids(self) -> List[str]:
        return list(self._records)

# core/job_store.py
"""
In-memory job registry persisted to a JSON file

Every successful put()/delete() rewrites the whole file before returning.
A failed write is logged and reported through the return value, but the
in-memory change stays: the registry favours availability over durability.
"""

import json
import logging
import os
from typing import Dict, Iterable, List, Optional

from core.exceptions import PersistenceError, ValidationError
from core.models import Job
from core.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


def write_json_file(path: str, payload, mode: int = 0o644):
    """Write JSON through a temp file + rename so readers never see half a file"""
    directory = os.path.dirname(path) or '.'
    tmp_path = os.path.join(directory, f".{os.path.basename(path)}.tmp")
    try:
        os.makedirs(directory, exist_ok=True)
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.write('\n')
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceError(f"failed to write {path}: {e}") from e


class JobStore:
    """Jobs keyed by id, guarded by a readers/writer lock"""

    def __init__(self, path: str, lock: Optional[ReadWriteLock] = None):
        self.path = path
        self._lock = lock or ReadWriteLock()
        self._jobs: Dict[str, Job] = {}

    def read_file(self) -> List[Job]:
        """
        Parse the backing file without touching the in-memory set.

        A missing file is created empty. Records that fail to parse are
        skipped with an error log so one bad entry cannot hide the rest.

        Raises:
            PersistenceError: if the file exists but is unreadable or not a JSON array
        """
        if not os.path.exists(self.path):
            write_json_file(self.path, [])
            logger.info(f"Created empty jobs file at {self.path}")
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                records = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"failed to read jobs file {self.path}: {e}") from e

        if not isinstance(records, list):
            raise PersistenceError(f"jobs file {self.path} must contain a JSON array")

        jobs = {}
        for index, record in enumerate(records):
            try:
                job = Job.from_dict(record)
            except ValidationError as e:
                logger.error(f"Skipping job #{index} in {self.path}: {e}")
                continue
            if not job.id:
                logger.error(f"Skipping job #{index} in {self.path}: missing id")
                continue
            jobs[job.id] = job
        return list(jobs.values())

    def load(self) -> List[Job]:
        """Replace the in-memory set with the contents of the backing file"""
        jobs = self.read_file()
        self.replace_all(jobs)
        logger.info(f"Loaded {len(jobs)} jobs from {self.path}")
        return jobs

    def list(self) -> List[Job]:
        with self._lock.read_locked():
            return list(self._jobs.values())

    def ids(self) -> List[str]:
        with self._lock.read_locked():
            return list(self._jobs)

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock.read_locked():
            return self._jobs.get(job_id)

    def exists(self, job_id: str) -> bool:
        with self._lock.read_locked():
            return job_id in self._jobs

    def put(self, job: Job) -> bool:
        """Insert or replace a job and persist; returns False if the write failed"""
        with self._lock.write_locked():
            self._jobs[job.id] = job
            return self._persist_locked()

    def delete(self, job_id: str) -> bool:
        """
        Remove a job and persist.

        Returns:
            True if the job existed (whether or not the write succeeded)
        """
        with self._lock.write_locked():
            if self._jobs.pop(job_id, None) is None:
                return False
            self._persist_locked()
            return True

    def replace_all(self, jobs: Iterable[Job]):
        """Swap in a whole job set, e.g. one just returned by read_file(); the file is not rewritten"""
        with self._lock.write_locked():
            self._jobs = {job.id: job for job in jobs}

    def _persist_locked(self) -> bool:
        # caller holds the write lock
        records = [job.to_dict() for job in self._jobs.values()]
        try:
            write_json_file(self.path, records, mode=0o644)
        except PersistenceError as e:
            logger.error(f"Failed to save jobs: {e}")
            return False
        return True

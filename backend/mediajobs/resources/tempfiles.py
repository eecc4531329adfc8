"""
Per-job scratch storage.

One directory per job, created on admission, removed exactly once at
finalization. A failed removal is logged and reported, never raised:
it must not mask the job's own terminal error.
"""

import logging
import re
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_-]')


class TempFileManager:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._lock = threading.Lock()
        self._dirs: Dict[str, Path] = {}

    def create_scratch_dir(self, job_id: str) -> Path:
        """
        Create a uniquely named scratch directory for `job_id`.

        Names come from mkdtemp, so two jobs can never collide even if
        their ids sanitize to the same prefix.

        Raises:
            ValueError: If the job already owns a scratch directory
            OSError: If the directory cannot be created
        """
        with self._lock:
            if job_id in self._dirs:
                raise ValueError(f"Job {job_id} already has a scratch directory")

            self.root.mkdir(parents=True, exist_ok=True)
            prefix = f"job-{_UNSAFE_CHARS.sub('_', job_id)[:32]}-"
            path = Path(tempfile.mkdtemp(prefix=prefix, dir=self.root))
            self._dirs[job_id] = path

        logger.debug(f"[TempFiles] Created {path} for job {job_id}")
        return path

    def path_for(self, job_id: str) -> Optional[Path]:
        with self._lock:
            return self._dirs.get(job_id)

    def cleanup(self, job_id: str) -> bool:
        """
        Remove the job's scratch directory.

        Only the first call for a job does anything.

        Returns:
            True if the directory is gone, False if there was nothing to
            remove or removal failed
        """
        with self._lock:
            path = self._dirs.pop(job_id, None)
        if path is None:
            return False

        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            logger.debug(f"[TempFiles] {path} for job {job_id} was already removed")
        except OSError as e:
            logger.warning(f"[TempFiles] Failed to remove {path} for job {job_id}: {e}")
            return False

        logger.debug(f"[TempFiles] Removed {path} for job {job_id}")
        return True

    def active(self) -> List[Path]:
        with self._lock:
            return list(self._dirs.values())

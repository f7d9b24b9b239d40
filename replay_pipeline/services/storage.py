# replay_pipeline/services/storage.py
import os
import json
import logging
import tempfile
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DELETED = "deleted"
MISSING = "missing"


class ResultStorage:
    """One JSON artifact per completed job, ``<results_dir>/<job_id>.json``."""

    def __init__(self, results_dir: str):
        self.results_dir = results_dir

    def path_for(self, job_id: int) -> str:
        return os.path.join(self.results_dir, f"{job_id}.json")

    def write(self, job_id: int, payload: Dict[str, Any]) -> str:
        """
        Write (or overwrite) the artifact for ``job_id`` and return its path.

        The payload goes to a temp file in the same directory first and is
        swapped in with ``os.replace``, so a redelivered task never leaves a
        half-written artifact behind.
        """
        os.makedirs(self.results_dir, exist_ok=True)
        path = self.path_for(job_id)
        fd, tmp = tempfile.mkstemp(prefix=f".{job_id}.", suffix=".tmp", dir=self.results_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        return path

    @staticmethod
    def load(path: str) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read result file {path}: {e}")
            return None


def delete_file(path: Optional[str]) -> str:
    """
    Remove ``path``. Returns DELETED, or MISSING when there was nothing to
    remove; any other OSError propagates to the caller.
    """
    if not path:
        return MISSING
    try:
        os.unlink(path)
    except FileNotFoundError:
        return MISSING
    return DELETED

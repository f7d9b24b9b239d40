# replay_pipeline/services/parser_client.py
import os
import logging
from typing import Any, Dict, Optional

import requests

from replay_pipeline.errors import (
    AnalysisTimeoutError,
    PermanentInputError,
    TransientDependencyError,
)

logger = logging.getLogger(__name__)

PARSE_PATH = "/Parse/parse"


class ParserClient:
    """HTTP client for the external replay parser service."""

    def __init__(self, base_url: str, timeout: float = 60, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def parse(self, file_path: str) -> Dict[str, Any]:
        """
        Upload ``file_path`` as multipart and return the parsed telemetry.

        Timeouts, connection errors and non-2xx answers are transient (the
        queue retries them); an unreadable file or a non-JSON body is not.
        """
        url = f"{self.base_url}{PARSE_PATH}"
        try:
            fh = open(file_path, "rb")
        except OSError as e:
            raise PermanentInputError(f"Cannot read replay file {file_path}: {e.strerror or e}") from e

        with fh:
            try:
                resp = self._session.post(
                    url,
                    files={"file": (os.path.basename(file_path), fh, "application/octet-stream")},
                    timeout=self.timeout,
                )
            except requests.Timeout as e:
                raise AnalysisTimeoutError(
                    f"Parser service did not answer within {self.timeout:g}s"
                ) from e
            except requests.RequestException as e:
                raise TransientDependencyError(f"Parser service unreachable: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise TransientDependencyError(
                f"Parser service returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise PermanentInputError("Parser service returned a non-JSON body") from e
        if not isinstance(payload, dict):
            raise PermanentInputError("Parser service returned JSON that is not an object")

        logger.debug(f"Parsed {file_path}: {len(payload.get('events') or [])} events")
        return payload

    def close(self):
        self._session.close()

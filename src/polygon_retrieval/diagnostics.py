"""
Diagnostic dumps of rejected vendor payloads.

When a response fails a data-integrity check the raw payload is written to
{log_dir}/{endpoint}/{ISO-8601 timestamp}.json for later investigation.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import pytz

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = "logs"


class DiagnosticDumper:
    """Writes rejected payloads under a per-endpoint directory."""

    def __init__(self, log_dir: Union[str, Path] = DEFAULT_LOG_DIR):
        self.log_dir = Path(log_dir)

    def dump(self, endpoint: str, payload: Any, now: Optional[datetime] = None) -> Path:
        """
        Write payload as JSON and return the file path.

        Args:
            endpoint: Endpoint name; becomes the subdirectory.
            payload: Decoded response to persist.
            now: Timestamp for the file name (defaults to current UTC time).

        Raises:
            OSError: If the directory or file cannot be written.
        """
        now = now or datetime.now(tz=pytz.UTC)
        directory = self.log_dir / endpoint
        directory.mkdir(parents=True, exist_ok=True)

        path = directory / f"{now.isoformat()}.json"
        with open(path, 'w') as f:
            json.dump(payload, f, default=str)

        logger.info(f"Wrote rejected {endpoint} payload to {path}")
        return path

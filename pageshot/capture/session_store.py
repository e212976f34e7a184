"""On-disk snapshots of authenticated sessions.

One JSON file per (domain, principal) holds the cookies, local storage pairs
and the wall-clock time they were captured. Snapshots older than the
configured maximum age are ignored and removed on load.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from ..models.capture import SessionArtifacts

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_S = 24 * 60 * 60


def _safe_part(value: str) -> str:
    return re.sub(r'[^A-Za-z0-9_.-]', '_', value) or "default"


class SessionStore:
    """Directory of persisted session snapshots."""

    def __init__(
        self,
        directory: Union[str, Path],
        max_age_s: float = DEFAULT_MAX_AGE_S,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.max_age_s = max_age_s
        self._clock = clock

    def path_for(self, domain: str, principal: str) -> Path:
        return self.directory / f"session_{_safe_part(domain)}_{_safe_part(principal)}.json"

    def save(self, domain: str, principal: str, artifacts: SessionArtifacts) -> Path:
        """Write a snapshot and return its path."""
        path = self.path_for(domain, principal)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'timestamp': self._clock(),
            'domain': domain,
            'principal': principal,
            'cookies': artifacts.cookies,
            'storage': artifacts.storage,
        }
        path.write_text(json.dumps(data, indent=2), encoding='utf-8')
        logger.debug(f"Saved session snapshot to {path}")
        return path

    def load(self, domain: str, principal: str) -> Optional[Tuple[SessionArtifacts, float]]:
        """Return (artifacts, age in seconds) for a fresh snapshot, else None."""
        path = self.path_for(domain, principal)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding='utf-8'))
            age_s = self._clock() - float(data['timestamp'])
            artifacts = SessionArtifacts(
                cookies=data.get('cookies', []),
                storage=data.get('storage', {}),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable session snapshot {path}: {e}")
            return None

        if age_s >= self.max_age_s:
            logger.info(f"Session snapshot {path.name} is older than {self.max_age_s}s, removing")
            self.clear(domain, principal)
            return None

        return artifacts, age_s

    def clear(self, domain: str, principal: str) -> None:
        path = self.path_for(domain, principal)
        try:
            path.unlink()
        except FileNotFoundError:
            pass

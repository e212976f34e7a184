"""Artifact naming and per-request artifact collection."""

import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from ..models.capture import ArtifactKind, CaptureArtifact

logger = logging.getLogger(__name__)


def generate_base_name(url: str) -> str:
    """Derive a file-safe base name from a URL path and query.

    ``https://a.test/`` -> ``homepage``; ``https://a.test/app/Dash?tab=1`` ->
    ``app_dash_tab=1``.
    """
    parsed = urlparse(url)
    path = parsed.path or "/"
    name = "homepage" if path == "/" else path

    name = re.sub(r'^/+|/+$', '', name)
    name = name.replace('/', '_')
    name = re.sub(r'[^a-zA-Z0-9_-]', '_', name)
    name = re.sub(r'_+', '_', name)
    name = name.lower()

    if parsed.query:
        query = re.sub(r'[^a-zA-Z0-9_=&-]', '_', parsed.query)[:30]
        name += '_' + query

    return name or "page"


def sanitize_tab_name(text: str, index: int) -> str:
    name = re.sub(r'[^a-zA-Z0-9\s]', '', text or '')
    name = re.sub(r'\s+', '_', name.strip()).lower()[:30]
    return name or f"tab_{index}"


class ArtifactCollector:
    """Ordered artifacts of one request with names kept unique."""

    def __init__(self):
        self.artifacts: List[CaptureArtifact] = []
        self._names = set()

    def _unique(self, name: str) -> str:
        if name not in self._names:
            return name
        stem, dot, ext = name.rpartition('.')
        if not dot:
            stem, ext = name, ''
        counter = 2
        while True:
            candidate = f"{stem}_{counter}.{ext}" if ext else f"{stem}_{counter}"
            if candidate not in self._names:
                return candidate
            counter += 1

    def add(
        self,
        name: str,
        kind: ArtifactKind,
        payload: bytes = b"",
        url: Optional[str] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> CaptureArtifact:
        unique = self._unique(name)
        if unique != name:
            logger.debug(f"Artifact name '{name}' already used, renamed to '{unique}'")
        artifact = CaptureArtifact(
            name=unique,
            kind=kind,
            payload=payload,
            url=url,
            error=error,
            error_code=error_code,
        )
        self._names.add(unique)
        self.artifacts.append(artifact)
        return artifact

    def __len__(self) -> int:
        return len(self.artifacts)

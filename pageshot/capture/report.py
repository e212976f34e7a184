"""Run report and artifact files for command line captures."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models.capture import CaptureResult

logger = logging.getLogger(__name__)


class RunReport:
    """Write captured images to a directory and record them in a JSON report.

    File names are prefixed with a run-wide counter (``001_``, ``002_``...) so
    artifacts of different requests never overwrite each other.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        report_name: str = "capture_report.json",
        options: Optional[Dict[str, Any]] = None,
    ):
        self.output_dir = Path(output_dir)
        self.report_name = report_name
        self.options = options or {}
        self.results: List[Dict[str, Any]] = []
        self.pages: List[str] = []
        self.screenshot_count = 0

    @property
    def report_path(self) -> Path:
        return self.output_dir / self.report_name

    def add_result(self, result: CaptureResult) -> List[Path]:
        """Save the image artifacts of ``result`` and record every artifact.

        Returns:
            Paths of the files written
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        if result.url not in self.pages:
            self.pages.append(result.url)

        written = []
        for artifact in result.artifacts:
            filename = None
            if artifact.is_image and artifact.payload:
                self.screenshot_count += 1
                filename = f"{self.screenshot_count:03d}_{artifact.name}"
                path = self.output_dir / filename
                path.write_bytes(artifact.payload)
                written.append(path)
                logger.debug(f"Saved {path}")

            self.results.append({
                'type': artifact.kind.value,
                'url': artifact.url or result.url,
                'filename': filename,
                'error': artifact.error,
            })

        if result.failure is not None:
            self.results.append({
                'type': 'failure',
                'url': result.final_url or result.url,
                'filename': None,
                'error': f"{result.failure.code}: {result.failure.message}",
            })

        return written

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'total_screenshots': self.screenshot_count,
            'total_pages': len(self.pages),
            'results': self.results,
            'options': self.options,
        }

    def write(self) -> Path:
        """Write the JSON report and return its path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.report_path
        path.write_text(json.dumps(self.to_dict(), indent=2, default=str), encoding='utf-8')
        logger.info(f"Report saved to {path}")
        return path

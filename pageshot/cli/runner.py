"""CLI runner for Pageshot with exit code mapping.

This module runs capture requests through the engine, writes artifacts and
the run report to the output directory, and maps capture outcomes to exit
codes suitable for scripts and CI jobs.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import List, Optional

from ..capture.config import PageshotConfig
from ..capture.engine import CaptureEngine
from ..capture.report import RunReport
from ..models.capture import CaptureRequest, CaptureResult, CaptureStatus

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """CLI exit codes.

    Higher values win when several requests finish differently.
    """
    SUCCESS = 0           # Every request captured without errors
    CAPTURE_ERRORS = 1    # Partial capture, or interaction/tab/navigation step errors
    ACCESS_DENIED = 2     # Login required, login failed or error page
    CONFIG_ERROR = 3      # Configuration or request error
    RUNTIME_ERROR = 4     # Runtime error during execution


ACCESS_DENIED_CODES = {"login_required", "login_failed", "navigation_redirected"}


def exit_code_for(result: CaptureResult) -> ExitCode:
    """Map one capture result to an exit code."""
    if result.failure is not None and result.failure.code in ACCESS_DENIED_CODES:
        return ExitCode.ACCESS_DENIED
    if result.status == CaptureStatus.FAILED:
        return ExitCode.RUNTIME_ERROR
    if result.status == CaptureStatus.PARTIAL or result.error_artifacts:
        return ExitCode.CAPTURE_ERRORS
    return ExitCode.SUCCESS


def combined_exit_code(results: List[CaptureResult]) -> ExitCode:
    return max((exit_code_for(result) for result in results), default=ExitCode.SUCCESS)


@dataclass
class CLIConfig:
    """Configuration for one CLI run."""

    requests: List[CaptureRequest]
    output_dir: Path
    report_name: str = "capture_report.json"
    write_report: bool = True
    options: dict = field(default_factory=dict)


class CaptureRunner:
    """Run capture requests and persist their artifacts."""

    def __init__(self, config: CLIConfig, pageshot_config: PageshotConfig, engine: Optional[CaptureEngine] = None):
        self.config = config
        self.pageshot_config = pageshot_config
        self.engine = engine or CaptureEngine(pageshot_config.get_engine_config())
        self.report = RunReport(config.output_dir, config.report_name, options=config.options)
        self.results: List[CaptureResult] = []

    async def run(self) -> ExitCode:
        async with self.engine.session():
            for request in self.config.requests:
                result = await self.engine.capture(request)
                self.results.append(result)
                self.report.add_result(result)

        if self.config.write_report:
            self.report.write()

        exit_code = combined_exit_code(self.results)
        logger.info(f"Run finished with exit code {exit_code.value} ({exit_code.name})")
        return exit_code

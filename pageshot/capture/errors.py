"""Capture error taxonomy.

Every error carries a stable ``error_code`` so aborted requests can report a
machine-readable failure reason instead of a bare exception.
"""

from typing import List, Optional


class CaptureError(Exception):
    """Base capture error."""

    def __init__(
        self,
        message: str = "Capture failed",
        error_code: str = "capture_failed",
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ElementNotFound(CaptureError):
    """Raised when every resolution strategy is exhausted for an element query."""

    def __init__(
        self,
        message: str = "Element not found",
        selector: Optional[str] = None,
        attempted: Optional[List[str]] = None
    ):
        self.selector = selector
        self.attempted = list(attempted or [])
        super().__init__(
            message=message,
            error_code="element_not_found",
            details={"selector": selector, "attempted": self.attempted}
        )


class LoginRequired(CaptureError):
    """Raised when a login surface is reached and no credentials were supplied."""

    def __init__(
        self,
        message: str = "Login required",
        url: Optional[str] = None
    ):
        super().__init__(
            message=message,
            error_code="login_required",
            details={"url": url} if url else {}
        )


class LoginFailed(CaptureError):
    """Raised when supplied credentials could not be verified."""

    def __init__(
        self,
        message: str = "Login failed",
        url: Optional[str] = None,
        reason: Optional[str] = None
    ):
        details = {}
        if url:
            details["url"] = url
        if reason:
            details["reason"] = reason
        super().__init__(
            message=message,
            error_code="login_failed",
            details=details
        )


class NavigationRedirectedError(CaptureError):
    """Raised when navigation lands on an error-page pattern."""

    def __init__(
        self,
        message: str = "Redirected to an error page",
        requested_url: Optional[str] = None,
        landed_url: Optional[str] = None
    ):
        super().__init__(
            message=message,
            error_code="navigation_redirected",
            details={"requested_url": requested_url, "landed_url": landed_url}
        )


class NavigationFailed(CaptureError):
    """Raised when the initial navigation itself fails."""

    def __init__(self, message: str = "Navigation failed", url: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="navigation_failed",
            details={"url": url} if url else {}
        )


class AnalysisServiceFailure(CaptureError):
    """Raised when the external analysis service is unreachable or unparseable.

    Always recovered locally by falling back to heuristic tab detection.
    """

    def __init__(
        self,
        message: str = "Analysis service failed",
        status_code: Optional[int] = None
    ):
        super().__init__(
            message=message,
            error_code="analysis_service_failure",
            details={"status_code": status_code} if status_code else {}
        )


class ResourceExhaustion(CaptureError):
    """Pool exhaustion.

    Never raised: the pool reassigns its least recently used browser when
    full, so acquisition always makes progress. Kept so the taxonomy is
    complete for host layers that map error codes.
    """

    def __init__(self, message: str = "Resource pool exhausted"):
        super().__init__(message=message, error_code="resource_exhaustion")

"""Pydantic models for capture requests, artifacts and results.

This module defines the request-scoped data model of the capture engine:
the request shape accepted from the host layer, the element queries and
scroll plans built while a page is processed, and the artifacts and result
returned to the caller.
"""

import base64
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Base for models that accept both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InteractionAction(str, Enum):
    """Supported interaction step actions."""
    CLICK = "click"
    HOVER = "hover"
    FILL = "fill"
    SELECT = "select"
    SCROLL = "scroll"
    WAIT = "wait"


class ArtifactKind(str, Enum):
    """Kind of a produced capture artifact."""
    TOP = "top"
    SCROLL = "scroll"
    FULL_PAGE = "full_page"
    TAB = "tab"
    INTERACTION = "interaction"
    NAVIGATION = "navigation"
    ERROR = "error"
    TEXT = "text"


class CaptureStatus(str, Enum):
    """Overall status of one capture request."""
    SUCCESS = "success"
    PARTIAL = "partial"
    LOGIN_REQUIRED = "login_required"
    ERROR_PAGE = "error_page"
    FAILED = "failed"


class ScrollRoot(str, Enum):
    """Which element a scroll plan moves."""
    WINDOW = "window"
    CONTAINER = "container"
    NONE = "none"


class Viewport(RequestModel):
    """Browser viewport dimensions."""

    width: int = Field(default=1920, gt=0, description="Viewport width in pixels")
    height: int = Field(default=1080, gt=0, description="Viewport height in pixels")


class LoginCredentials(RequestModel):
    """Credentials and optional form selectors for an authenticated capture."""

    username: str = Field(description="Principal identifier used to log in")
    password: str = Field(description="Password for the principal")
    login_url: Optional[str] = Field(
        default=None,
        description="Login page to navigate to before filling the form"
    )
    username_selector: Optional[str] = Field(default=None, description="Username field selector")
    password_selector: Optional[str] = Field(default=None, description="Password field selector")
    submit_selector: Optional[str] = Field(default=None, description="Submit control selector")

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)


class Interaction(RequestModel):
    """One step of a caller-supplied interaction sequence."""

    action: InteractionAction = Field(description="Action to perform")
    selector: Optional[str] = Field(default=None, description="Target element selector")
    value: Optional[str] = Field(
        default=None,
        description="Fill/select value, wait duration in ms, or scroll offset"
    )
    wait_for: Optional[str] = Field(
        default=None,
        description="Selector to wait for after the action"
    )
    screenshot: bool = Field(default=False, description="Capture a frame after the action")

    @field_validator('value', mode='before')
    @classmethod
    def coerce_value(cls, v):
        """Accept numeric values from loosely typed callers."""
        if v is None or isinstance(v, str):
            return v
        return str(v)


class NavigationFlow(RequestModel):
    """Link-following crawl performed from the landed page."""

    follow_links: List[str] = Field(
        default_factory=list,
        description="Selectors whose matching elements supply links to follow"
    )
    max_depth: int = Field(default=2, ge=0, description="Maximum crawl depth")
    exclude_patterns: List[str] = Field(
        default_factory=list,
        description="URL substrings that are never visited"
    )
    screenshot_each_page: bool = Field(default=False, description="Capture every visited page")


class CaptureOptions(RequestModel):
    """Capture switches of a request."""

    scroll_screenshots: bool = Field(default=True, description="Capture scroll step frames")
    full_page: bool = Field(default=True, description="Capture a full-page frame")
    viewport: Viewport = Field(default_factory=Viewport)
    page_analysis: bool = Field(default=False, description="Attach a structural summary")
    detect_tabs: bool = Field(default=False, description="Detect and capture tab-like regions")
    tab_strategy: str = Field(default="heuristic", description="heuristic or ai")

    @field_validator('tab_strategy')
    @classmethod
    def validate_tab_strategy(cls, v):
        if v not in ("heuristic", "ai"):
            raise ValueError(f"Unknown tab strategy: {v}")
        return v


class CaptureRequest(CaptureOptions):
    """One end-to-end capture call."""

    url: str = Field(description="Target URL")
    login_credentials: Optional[LoginCredentials] = Field(default=None)
    interactions: List[Interaction] = Field(default_factory=list)
    navigation_flow: Optional[NavigationFlow] = Field(default=None)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        """Validate URL format."""
        result = urlparse(v)
        if not result.scheme or not result.netloc:
            raise ValueError(f"Invalid URL: {v}")
        return v

    @property
    def domain(self) -> str:
        return urlparse(self.url).hostname or ""

    @property
    def has_credentials(self) -> bool:
        return self.login_credentials is not None and self.login_credentials.is_complete

    @property
    def principal(self) -> Optional[str]:
        if self.login_credentials is None:
            return None
        return self.login_credentials.username


class ElementQuery(BaseModel):
    """A request to resolve one DOM target."""

    selector: Optional[str] = Field(default=None, description="Raw caller selector")
    hint: Optional[str] = Field(default=None, description="Semantic hint text")
    action: InteractionAction = Field(default=InteractionAction.CLICK)

    @classmethod
    def from_interaction(cls, interaction: Interaction) -> "ElementQuery":
        return cls(
            selector=interaction.selector,
            hint=interaction.value,
            action=interaction.action,
        )


class ScrollPlan(BaseModel):
    """Ordered capture offsets for one page."""

    root: ScrollRoot = Field(default=ScrollRoot.NONE)
    offsets: List[int] = Field(default_factory=list)
    step_size: int = Field(default=800, gt=0)
    max_steps: int = Field(default=9, ge=0)
    max_extent: int = Field(default=0, ge=0, description="True maximum scroll offset")
    container_index: Optional[int] = Field(
        default=None,
        description="Index of the chosen scroll container among measured candidates"
    )

    @property
    def is_empty(self) -> bool:
        return not self.offsets


class SessionArtifacts(BaseModel):
    """Cookies and storage pairs that represent an authenticated session."""

    cookies: List[Dict[str, Any]] = Field(default_factory=list)
    storage: Dict[str, str] = Field(default_factory=dict)


class CaptureArtifact(BaseModel):
    """One produced image or text record."""

    name: str = Field(description="Logical name, unique within one request")
    kind: ArtifactKind
    payload: bytes = Field(default=b"", description="PNG bytes, or UTF-8 text")
    url: Optional[str] = Field(default=None, description="Page URL at capture time")
    error: Optional[str] = Field(default=None, description="Error recorded with this artifact")
    error_code: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_image(self) -> bool:
        return self.kind != ArtifactKind.TEXT

    def to_content(self) -> Dict[str, Any]:
        """Render as a host content item."""
        if not self.is_image:
            return {"type": "text", "text": self.payload.decode("utf-8")}
        item = {
            "type": "image",
            "mimeType": "image/png",
            "data": base64.b64encode(self.payload).decode("ascii"),
            "name": self.name,
        }
        if self.error:
            item["error"] = self.error
        return item


class FailureReason(BaseModel):
    """Machine-readable reason an aborted request stopped."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CaptureResult(BaseModel):
    """Outcome of one capture request."""

    url: str
    final_url: Optional[str] = None
    status: CaptureStatus = CaptureStatus.SUCCESS
    artifacts: List[CaptureArtifact] = Field(default_factory=list)
    page_analysis: Optional[Dict[str, Any]] = None
    failure: Optional[FailureReason] = None
    timings: Dict[str, Optional[float]] = Field(default_factory=dict)
    auth_state: Optional[str] = None

    @property
    def images(self) -> List[CaptureArtifact]:
        return [a for a in self.artifacts if a.is_image]

    @property
    def error_artifacts(self) -> List[CaptureArtifact]:
        return [a for a in self.artifacts if a.error]

    @property
    def artifact_names(self) -> List[str]:
        return [a.name for a in self.artifacts]

    @property
    def is_successful(self) -> bool:
        return self.status in (CaptureStatus.SUCCESS, CaptureStatus.PARTIAL)

    def to_content(self, include_timings: bool = True) -> List[Dict[str, Any]]:
        """Render artifacts, analysis and timings as host content items."""
        content = [artifact.to_content() for artifact in self.artifacts]
        if self.page_analysis is not None:
            content.append({
                "type": "text",
                "text": f"# Page Analysis\n\n{json.dumps(self.page_analysis, indent=2)}",
            })
        if self.failure is not None:
            content.append({
                "type": "text",
                "text": f"# Capture Failure\n\n{json.dumps(self.failure.model_dump(), indent=2)}",
            })
        if include_timings and self.timings:
            total = self.timings.get("total")
            content.append({
                "type": "text",
                "text": (
                    f"# Performance Debug Info\n\nTotal Time: {total}ms\n"
                    f"Breakdown: {json.dumps(self.timings, indent=2)}"
                ),
            })
        return content

    def export_summary(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "status": self.status.value,
            "artifacts": self.artifact_names,
            "errors": [
                {"name": a.name, "error": a.error, "code": a.error_code}
                for a in self.error_artifacts
            ],
            "failure": self.failure.model_dump() if self.failure else None,
            "timings": self.timings,
        }

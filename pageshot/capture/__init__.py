"""Browser capture engine for Pageshot.

This module drives a headless browser to produce repeatable captures of pages
with unknown layout, lazy-loaded content, login walls and tab widgets.

Main Components:
- Resource Pool: pooled browsers, contexts and cached sessions
- Selector Resolver: cascading element resolution
- Readiness Classifier: adaptive content readiness waits
- Scroll Planner: scroll offsets for window or container scrolling
- Auth Controller: login detection, execution and verification
- Tab Detector: heuristic and AI-assisted tab region detection
- Capture Session: per-request capture workflow
- Capture Engine: resource lending, deadlines and statistics

Usage:
    from pageshot.capture import CaptureEngine
    from pageshot.models import CaptureRequest

    async with CaptureEngine().session() as engine:
        result = await engine.capture(CaptureRequest(url="https://example.com"))
"""

__all__ = [
    # Errors
    "CaptureError",
    "ElementNotFound",
    "LoginRequired",
    "LoginFailed",
    "NavigationRedirectedError",
    "NavigationFailed",
    "AnalysisServiceFailure",
    "ResourceExhaustion",

    # Main components
    "CaptureEngine",
    "CaptureEngineConfig",
    "CaptureSession",
    "SessionComponents",
    "ResourcePool",
    "BrowserConfig",
    "SessionStore",
    "SelectorResolver",
    "ReadinessClassifier",
    "ReadinessProfile",
    "ScrollPlanner",
    "AuthController",
    "AuthState",
    "HeuristicTabDetector",
    "AITabDetector",
    "AnalysisClient",
    "AnalysisServiceConfig",
    "InteractionRunner",
    "NavigationCrawler",
    "ArtifactCollector",
    "RunReport",

    # Configuration
    "PageshotConfig",
    "ConfigManager",
    "get_config",

    # Convenience functions
    "analyze_page",
    "compute_scroll_plan",
    "generate_base_name",
    "create_capture_engine",
]

from .errors import (
    CaptureError,
    ElementNotFound,
    LoginRequired,
    LoginFailed,
    NavigationRedirectedError,
    NavigationFailed,
    AnalysisServiceFailure,
    ResourceExhaustion,
)

from .engine import (
    CaptureEngine,
    CaptureEngineConfig,
    create_capture_engine,
)

from .page_session import CaptureSession, SessionComponents
from .resource_pool import ResourcePool, BrowserConfig
from .session_store import SessionStore
from .selector_resolver import SelectorResolver
from .readiness import ReadinessClassifier, ReadinessProfile
from .scroll_planner import ScrollPlanner, compute_scroll_plan
from .auth import AuthController, AuthState
from .tab_detector import HeuristicTabDetector, AITabDetector
from .analysis_client import AnalysisClient, AnalysisServiceConfig
from .interactions import InteractionRunner
from .navigation import NavigationCrawler
from .naming import ArtifactCollector, generate_base_name
from .page_analysis import analyze_page
from .report import RunReport
from .config import PageshotConfig, ConfigManager, get_config

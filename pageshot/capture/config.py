"""Configuration system for the capture engine.

This module provides configuration management for engine settings, including
YAML loading, validation, environment-specific overrides and conversion into
the engine's runtime configuration objects.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..models.capture import Viewport
from .analysis_client import AnalysisServiceConfig
from .engine import CaptureEngineConfig
from .resource_pool import BrowserConfig, BrowserEngineType

ENV_VAR = 'PAGESHOT_ENV'
CONFIG_PATH_VAR = 'PAGESHOT_CONFIG'
API_KEY_VAR = 'OPENROUTER_API_KEY'

VALID_ENVIRONMENTS = {'production', 'staging', 'development', 'test'}


class BrowserSettings(BaseModel):
    """Browser launch and context settings."""

    engine: str = Field(default="chromium", description="chromium, firefox or webkit")
    headless: bool = Field(default=True)
    slow_mo: int = Field(default=0, ge=0)
    user_agent: Optional[str] = Field(default=None, description="Overrides the default desktop user agent")
    locale: str = Field(default="en-US")
    timezone: Optional[str] = Field(default=None)
    ignore_https_errors: bool = Field(default=True)
    launch_args: Optional[List[str]] = Field(default=None, description="Replaces the default launch args")

    @field_validator('engine')
    @classmethod
    def validate_engine(cls, v):
        if v not in (BrowserEngineType.CHROMIUM, BrowserEngineType.FIREFOX, BrowserEngineType.WEBKIT):
            raise ValueError(f"Unknown browser engine: {v}")
        return v


class PoolSettings(BaseModel):
    """Resource pool and request deadline settings."""

    max_browsers: int = Field(default=3, ge=1)
    session_ttl_s: float = Field(default=30 * 60, gt=0)
    idle_ttl_s: float = Field(default=10 * 60, gt=0)
    sweep_interval_s: float = Field(default=60, gt=0)
    session_dir: Optional[str] = Field(default=None, description="Directory for session snapshots")
    session_max_age_s: float = Field(default=24 * 60 * 60, gt=0)
    page_timeout_s: float = Field(default=120, gt=0)
    navigation_timeout_ms: int = Field(default=30000, gt=0)


class ReadinessSettings(BaseModel):
    """Readiness ceilings and classification thresholds."""

    fast_ceiling_ms: int = Field(default=2000, gt=0)
    default_ceiling_ms: int = Field(default=5000, gt=0)
    data_heavy_ceiling_ms: int = Field(default=8000, gt=0)
    check_timeout_ms: int = Field(default=5000, gt=0)
    data_check_timeout_ms: int = Field(default=8000, gt=0)
    settle_ms: int = Field(default=100, ge=0)
    interactive_threshold: int = Field(default=10, ge=0)
    long_page_factor: float = Field(default=2.0, gt=0)


class ScrollSettings(BaseModel):
    """Scroll capture settings."""

    step_size: int = Field(default=800, gt=0)
    max_screenshots: int = Field(default=10, ge=1)
    scroll_delay_ms: int = Field(default=800, ge=0)
    reset_delay_ms: int = Field(default=1000, ge=0)
    window_threshold: int = Field(default=100, ge=0)
    min_container_height: int = Field(default=200, ge=0)


class TabSettings(BaseModel):
    """Tab detection settings."""

    max_tabs: int = Field(default=10, ge=1)
    tab_delay_ms: int = Field(default=1500, ge=0)
    tab_selectors: Optional[List[str]] = Field(default=None)
    container_selectors: Optional[List[str]] = Field(default=None)


class OutputSettings(BaseModel):
    """Defaults applied by the command line layer."""

    directory: str = Field(default="screenshots")
    report_name: str = Field(default="capture_report.json")
    viewport: Viewport = Field(default_factory=Viewport)
    exclude_patterns: List[str] = Field(default_factory=lambda: ['/logout', '/signout'])


class PageshotConfig(BaseModel):
    """Root configuration."""

    environment: str = Field(default="development", description="Environment name")
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    scroll: ScrollSettings = Field(default_factory=ScrollSettings)
    tabs: TabSettings = Field(default_factory=TabSettings)
    analysis: AnalysisServiceConfig = Field(default_factory=AnalysisServiceConfig)
    output: OutputSettings = Field(default_factory=OutputSettings)
    environments: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Environment-specific overrides"
    )

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in VALID_ENVIRONMENTS:
            raise ValueError(f"Environment must be one of: {VALID_ENVIRONMENTS}")
        return v

    def get_browser_config(self) -> BrowserConfig:
        browser = self.browser
        options = dict(
            engine=browser.engine,
            headless=browser.headless,
            slow_mo=browser.slow_mo,
            locale=browser.locale,
            timezone=browser.timezone,
            ignore_https_errors=browser.ignore_https_errors,
        )
        if browser.user_agent:
            options['user_agent'] = browser.user_agent
        if browser.launch_args is not None:
            options['launch_args'] = browser.launch_args
        return BrowserConfig(**options)

    def get_engine_config(self) -> CaptureEngineConfig:
        """Build the engine configuration."""
        pool = self.pool
        return CaptureEngineConfig(
            browser_config=self.get_browser_config(),
            max_browsers=pool.max_browsers,
            session_ttl_s=pool.session_ttl_s,
            idle_ttl_s=pool.idle_ttl_s,
            sweep_interval_s=pool.sweep_interval_s,
            session_dir=Path(pool.session_dir) if pool.session_dir else None,
            session_max_age_s=pool.session_max_age_s,
            page_timeout_s=pool.page_timeout_s,
            navigation_timeout_ms=pool.navigation_timeout_ms,
            readiness_options=self.readiness.model_dump(),
            scroll_options=self.scroll.model_dump(),
            tab_selectors=self.tabs.tab_selectors,
            container_selectors=self.tabs.container_selectors,
            max_tabs=self.tabs.max_tabs,
            tab_delay_ms=self.tabs.tab_delay_ms,
            analysis_config=self.analysis if self.analysis.api_key else None,
        )


def merge_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigManager:
    """Manager for configuration loading and caching."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to the YAML file. Defaults to $PAGESHOT_CONFIG,
                then config/capture.yaml in the project root
        """
        if config_path is None:
            config_path = os.environ.get(CONFIG_PATH_VAR)
        if config_path is None:
            project_root = Path(__file__).parent.parent.parent
            config_path = project_root / "config" / "capture.yaml"

        self.config_path = Path(config_path)
        self._config: Optional[PageshotConfig] = None
        self._loaded_env = None

    def load_config(self, force_reload: bool = False) -> PageshotConfig:
        """Load configuration from YAML, applying environment overrides.

        A missing file yields the defaults.

        Raises:
            ValueError: invalid YAML or failed validation
        """
        current_env = os.environ.get(ENV_VAR, 'development')

        if self._config is not None and not force_reload and current_env == self._loaded_env:
            return self._config

        config_data: Dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {self.config_path}: {e}")

        if not isinstance(config_data, dict):
            raise ValueError(f"Configuration root in {self.config_path} must be a mapping")

        config_data['environment'] = current_env
        env_overrides = (config_data.get('environments') or {}).get(current_env)
        if env_overrides:
            config_data = merge_overrides(config_data, env_overrides)

        try:
            config = PageshotConfig(**config_data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}")

        if not config.analysis.api_key and os.environ.get(API_KEY_VAR):
            config.analysis.api_key = os.environ[API_KEY_VAR]

        self._config = config
        self._loaded_env = current_env
        return self._config

    @property
    def config(self) -> PageshotConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    @property
    def environment(self) -> str:
        return self.config.environment

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """Get global configuration manager.

    Args:
        config_path: Path to config file (only used on first call)
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager

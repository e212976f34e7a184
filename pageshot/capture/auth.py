"""Authentication detection, login and session reuse.

The controller is an explicit state machine:

    UNKNOWN -> CHECKING -> {AUTHENTICATED, NEEDS_LOGIN}
    NEEDS_LOGIN -> LOGGING_IN -> {LOGIN_SUCCEEDED, LOGIN_FAILED}

A cached session for (domain, principal) is restored and re-checked before
the login form is touched. At most one login attempt is made per call and a
failure is returned to the caller rather than retried.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from ..models.capture import ElementQuery, InteractionAction, LoginCredentials, SessionArtifacts
from .errors import ElementNotFound
from .readiness import ReadinessClassifier
from .resource_pool import ResourcePool
from .selector_resolver import SelectorResolver

logger = logging.getLogger(__name__)


DEFAULT_USERNAME_SELECTOR = 'input[type="email"], input[name*="email"], input[name*="username"]'
DEFAULT_PASSWORD_SELECTOR = 'input[type="password"]'
DEFAULT_SUBMIT_SELECTOR = 'button[type="submit"], input[type="submit"]'

LOGIN_PATH_HINTS = ('/login', '/signin', '/auth')
LOGIN_TITLE_HINTS = ('login', 'log in', 'sign in')
ERROR_ELEMENT_SELECTOR = '.error, [class*="error"], [class*="invalid"], [role="alert"]'
ERROR_TEXT_PATTERN = re.compile(r'invalid|incorrect|wrong|failed', re.IGNORECASE)


INDICATORS_SCRIPT = """
() => {
    const text = (document.body ? document.body.textContent : '').toLowerCase();
    return {
        path: window.location.pathname,
        title: document.title || '',
        hasLogout: !!document.querySelector(
            '[href*="logout"], [onclick*="logout"], [class*="logout"], [data-testid*="logout"]'),
        hasUserMarker: !!document.querySelector(
            '.user-menu, [class*="user-menu"], [class*="profile"], [data-testid*="user"], '
            + '.user-avatar, [class*="avatar"], img[class*="user"]'),
        hasWelcomeText: text.includes('welcome') || text.includes('dashboard'),
        hasPasswordInput: !!document.querySelector('input[type="password"]')
    };
}
"""

ERROR_TEXT_SCRIPT = f"""
() => Array.from(document.querySelectorAll('{ERROR_ELEMENT_SELECTOR}'))
    .map(el => (el.textContent || '').trim())
    .filter(Boolean)
    .join('; ')
"""

STORAGE_DUMP_SCRIPT = """
() => {
    const items = {};
    for (let i = 0; i < localStorage.length; i++) {
        const key = localStorage.key(i);
        items[key] = localStorage.getItem(key);
    }
    return items;
}
"""

STORAGE_RESTORE_SCRIPT = """
(storage) => {
    for (const [key, value] of Object.entries(storage)) {
        localStorage.setItem(key, value);
    }
}
"""


class AuthState(str, Enum):
    """Authentication states of one capture request."""
    UNKNOWN = "unknown"
    CHECKING = "checking"
    AUTHENTICATED = "authenticated"
    NEEDS_LOGIN = "needs_login"
    LOGGING_IN = "logging_in"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"


TRANSITIONS = {
    AuthState.UNKNOWN: {AuthState.CHECKING},
    AuthState.CHECKING: {AuthState.AUTHENTICATED, AuthState.NEEDS_LOGIN, AuthState.UNKNOWN},
    AuthState.NEEDS_LOGIN: {AuthState.CHECKING, AuthState.LOGGING_IN},
    AuthState.LOGGING_IN: {AuthState.LOGIN_SUCCEEDED, AuthState.LOGIN_FAILED},
    AuthState.AUTHENTICATED: {AuthState.CHECKING},
    AuthState.LOGIN_SUCCEEDED: {AuthState.CHECKING},
    AuthState.LOGIN_FAILED: set(),
}


class InvalidAuthTransition(ValueError):
    """Raised for a transition the state machine does not allow."""


def transition(current: AuthState, target: AuthState) -> AuthState:
    """Return ``target`` if the machine allows moving there from ``current``."""
    if target not in TRANSITIONS[current]:
        raise InvalidAuthTransition(f"Cannot move from {current.value} to {target.value}")
    return target


def is_login_url(url: str, hints=LOGIN_PATH_HINTS) -> bool:
    path = urlparse(url).path.lower() if "://" in url else url.lower()
    return any(hint in path for hint in hints)


@dataclass
class AuthIndicators:
    """Session and login cues observed on a page."""

    path: str = ""
    title: str = ""
    has_logout: bool = False
    has_user_marker: bool = False
    has_welcome_text: bool = False
    has_password_input: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthIndicators":
        return cls(
            path=data.get('path', ''),
            title=data.get('title', ''),
            has_logout=bool(data.get('hasLogout')),
            has_user_marker=bool(data.get('hasUserMarker')),
            has_welcome_text=bool(data.get('hasWelcomeText')),
            has_password_input=bool(data.get('hasPasswordInput')),
        )

    @property
    def session_present(self) -> bool:
        return self.has_logout or self.has_user_marker or self.has_welcome_text

    @property
    def login_present(self) -> bool:
        title = self.title.lower()
        return (
            is_login_url(self.path)
            or self.has_password_input
            or any(hint in title for hint in LOGIN_TITLE_HINTS)
        )


def classify_indicators(indicators: AuthIndicators) -> AuthState:
    """Map observed cues to the state a check lands in.

    AUTHENTICATED requires session cues and no login cues, because some
    authenticated pages still render a password input. A page with neither is
    UNKNOWN and is treated as public by callers.
    """
    if indicators.session_present and not indicators.login_present:
        return AuthState.AUTHENTICATED
    if indicators.login_present:
        return AuthState.NEEDS_LOGIN
    return AuthState.UNKNOWN


@dataclass
class AuthOutcome:
    """Result of one authentication pass."""

    state: AuthState = AuthState.UNKNOWN
    history: List[AuthState] = field(default_factory=lambda: [AuthState.UNKNOWN])
    used_cache: bool = False
    form_submitted: bool = False
    message: Optional[str] = None
    url: Optional[str] = None

    def advance(self, target: AuthState) -> AuthState:
        self.state = transition(self.state, target)
        self.history.append(self.state)
        return self.state

    @property
    def is_authenticated(self) -> bool:
        return self.state in (AuthState.AUTHENTICATED, AuthState.LOGIN_SUCCEEDED)


class AuthController:
    """Detect, perform and verify login for capture requests."""

    def __init__(
        self,
        pool: ResourcePool,
        resolver: SelectorResolver,
        readiness: ReadinessClassifier,
        navigation_timeout_ms: int = 30000,
        submit_navigation_timeout_ms: int = 10000,
        error_appearance_timeout_ms: int = 3000,
        restore_timeout_ms: int = 10000,
        field_delay_ms: int = 500,
    ):
        self.pool = pool
        self.resolver = resolver
        self.readiness = readiness
        self.navigation_timeout_ms = navigation_timeout_ms
        self.submit_navigation_timeout_ms = submit_navigation_timeout_ms
        self.error_appearance_timeout_ms = error_appearance_timeout_ms
        self.restore_timeout_ms = restore_timeout_ms
        self.field_delay_ms = field_delay_ms

    async def inspect(self, page: Page) -> AuthIndicators:
        try:
            data = await page.evaluate(INDICATORS_SCRIPT)
        except PlaywrightError as e:
            logger.warning(f"Could not inspect auth indicators: {e}")
            return AuthIndicators(path=urlparse(page.url).path)
        return AuthIndicators.from_dict(data or {})

    async def check(self, page: Page) -> AuthState:
        """Classify the current page as AUTHENTICATED, NEEDS_LOGIN or UNKNOWN."""
        indicators = await self.inspect(page)
        state = classify_indicators(indicators)
        logger.debug(f"Auth check on {page.url}: {state.value} ({indicators})")
        return state

    async def authenticate(
        self,
        page: Page,
        credentials: LoginCredentials,
        domain: str,
    ) -> AuthOutcome:
        """Bring the page to an authenticated state for ``credentials``.

        Returns an outcome whose state is AUTHENTICATED (already signed in or
        restored from cache), LOGIN_SUCCEEDED or LOGIN_FAILED.
        """
        outcome = AuthOutcome()
        outcome.advance(AuthState.CHECKING)

        observed = await self.check(page)
        if observed == AuthState.AUTHENTICATED:
            outcome.advance(AuthState.AUTHENTICATED)
            outcome.url = page.url
            logger.info(f"Already authenticated on {page.url}")
            return outcome
        outcome.advance(AuthState.NEEDS_LOGIN)

        cached = self.pool.get_cached_session(domain, credentials.username)
        if cached is not None:
            if await self._restore(page, cached):
                outcome.advance(AuthState.CHECKING)
                observed = await self.check(page)
                if observed != AuthState.NEEDS_LOGIN:
                    outcome.advance(AuthState.AUTHENTICATED)
                    outcome.used_cache = True
                    outcome.url = page.url
                    logger.info(f"Restored cached session for {credentials.username}@{domain}")
                    return outcome
                outcome.advance(AuthState.NEEDS_LOGIN)
            self.pool.invalidate_session(domain, credentials.username)

        outcome.advance(AuthState.LOGGING_IN)
        try:
            await self._submit_login(page, credentials)
            outcome.form_submitted = True
        except ElementNotFound as e:
            outcome.advance(AuthState.LOGIN_FAILED)
            outcome.message = f"Login form not found: {e.message}"
            outcome.url = page.url
            logger.error(outcome.message)
            return outcome
        except PlaywrightError as e:
            outcome.advance(AuthState.LOGIN_FAILED)
            outcome.message = f"Login form interaction failed: {e}"
            outcome.url = page.url
            logger.error(outcome.message)
            return outcome

        failure = await self._verify(page)
        outcome.url = page.url
        if failure is not None:
            outcome.advance(AuthState.LOGIN_FAILED)
            outcome.message = failure
            logger.error(f"Login failed for {credentials.username}@{domain}: {failure}")
            return outcome

        outcome.advance(AuthState.LOGIN_SUCCEEDED)
        logger.info(f"Login succeeded for {credentials.username}@{domain}, landed on {page.url}")
        await self._cache(page, domain, credentials.username)
        return outcome

    async def _restore(self, page: Page, artifacts: SessionArtifacts) -> bool:
        try:
            if artifacts.cookies:
                await page.context.add_cookies(artifacts.cookies)
            if artifacts.storage:
                await page.evaluate(STORAGE_RESTORE_SCRIPT, artifacts.storage)
            await page.reload(wait_until="domcontentloaded", timeout=self.restore_timeout_ms)
            await self.readiness.await_ready(page, fast_mode=True)
            return True
        except PlaywrightError as e:
            logger.warning(f"Failed to restore cached session: {e}")
            return False

    async def _submit_login(self, page: Page, credentials: LoginCredentials) -> None:
        if credentials.login_url and not page.url.startswith(credentials.login_url):
            logger.info(f"Navigating to login page: {credentials.login_url}")
            await page.goto(
                credentials.login_url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
            await self.readiness.await_ready(page, fast_mode=True)

        username = await self.resolver.resolve(page, ElementQuery(
            selector=credentials.username_selector or DEFAULT_USERNAME_SELECTOR,
            action=InteractionAction.FILL,
        ))
        password = await self.resolver.resolve(page, ElementQuery(
            selector=credentials.password_selector or DEFAULT_PASSWORD_SELECTOR,
            action=InteractionAction.FILL,
        ))
        submit = await self.resolver.resolve(page, ElementQuery(
            selector=credentials.submit_selector or DEFAULT_SUBMIT_SELECTOR,
            action=InteractionAction.CLICK,
        ))

        await username.locator.fill(credentials.username)
        await page.wait_for_timeout(self.field_delay_ms)
        await password.locator.fill(credentials.password)
        await page.wait_for_timeout(self.field_delay_ms)

        before = page.url
        await submit.locator.click()
        signal = await self._race_post_submit(page, before)
        logger.debug(f"Post-submit signal: {signal}")
        await self.readiness.await_ready(page, fast_mode=True)

    async def _race_post_submit(self, page: Page, before_url: str) -> Optional[str]:
        """Wait for navigation away from the form or for an error element."""
        navigation = asyncio.ensure_future(page.wait_for_url(
            lambda url: url != before_url,
            wait_until="domcontentloaded",
            timeout=self.submit_navigation_timeout_ms,
        ))
        error = asyncio.ensure_future(page.wait_for_selector(
            ERROR_ELEMENT_SELECTOR,
            state="visible",
            timeout=self.error_appearance_timeout_ms,
        ))
        labels = {navigation: "navigation", error: "error"}
        pending = {navigation, error}
        winner = None

        try:
            while pending and winner is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.exception() is None:
                        winner = labels[task]
        finally:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return winner

    async def _verify(self, page: Page) -> Optional[str]:
        """Return a failure reason, or None if the login looks successful."""
        if is_login_url(page.url):
            error_text = await self._error_text(page)
            return error_text or "Still on login page after submission"

        error_text = await self._error_text(page)
        if error_text and ERROR_TEXT_PATTERN.search(error_text):
            return error_text
        return None

    async def _error_text(self, page: Page) -> str:
        try:
            return (await page.evaluate(ERROR_TEXT_SCRIPT)) or ""
        except PlaywrightError as e:
            logger.debug(f"Could not read error elements: {e}")
            return ""

    async def _cache(self, page: Page, domain: str, principal: str) -> None:
        try:
            cookies = await page.context.cookies()
            storage = await page.evaluate(STORAGE_DUMP_SCRIPT)
        except PlaywrightError as e:
            logger.warning(f"Failed to capture session for caching: {e}")
            return
        self.pool.cache_session(
            domain,
            principal,
            SessionArtifacts(cookies=list(cookies), storage=dict(storage or {})),
        )

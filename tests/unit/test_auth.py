"""Unit tests for authentication handling."""

import pytest

from pageshot.capture.auth import (
    DEFAULT_PASSWORD_SELECTOR,
    DEFAULT_USERNAME_SELECTOR,
    AuthController,
    AuthIndicators,
    AuthOutcome,
    AuthState,
    InvalidAuthTransition,
    classify_indicators,
    is_login_url,
    transition,
)
from pageshot.models.capture import LoginCredentials, SessionArtifacts

from tests.fakes import LoginSite

SITE = LoginSite()
LOGIN_URL = SITE.login_url
DASHBOARD_URL = SITE.home_url
VALID_COOKIE = SITE.session_cookie


def make_login_page(accept_credentials=True):
    site = LoginSite(accept_credentials=accept_credentials)
    return site.page(url=site.login_url)


@pytest.fixture
def controller(pool, resolver, readiness):
    return AuthController(pool, resolver, readiness)


@pytest.fixture
def credentials():
    return LoginCredentials(username="u1", password="secret")


class TestStateMachine:

    def test_allowed_transitions(self):
        assert transition(AuthState.UNKNOWN, AuthState.CHECKING) == AuthState.CHECKING
        assert transition(AuthState.NEEDS_LOGIN, AuthState.LOGGING_IN) == AuthState.LOGGING_IN
        assert transition(AuthState.LOGGING_IN, AuthState.LOGIN_FAILED) == AuthState.LOGIN_FAILED

    def test_login_requires_needs_login(self):
        with pytest.raises(InvalidAuthTransition):
            transition(AuthState.CHECKING, AuthState.LOGGING_IN)

    def test_login_failed_is_terminal(self):
        for state in AuthState:
            with pytest.raises(InvalidAuthTransition):
                transition(AuthState.LOGIN_FAILED, state)

    def test_outcome_records_history(self):
        outcome = AuthOutcome()
        outcome.advance(AuthState.CHECKING)
        outcome.advance(AuthState.AUTHENTICATED)

        assert outcome.history == [AuthState.UNKNOWN, AuthState.CHECKING, AuthState.AUTHENTICATED]
        assert outcome.is_authenticated


class TestIndicators:

    @pytest.mark.parametrize("url, expected", [
        ("https://a.test/login", True),
        ("https://a.test/account/signin?next=/", True),
        ("https://a.test/auth/callback", True),
        ("https://a.test/dashboard", False),
        ("https://login.a.test/home", False),
    ])
    def test_is_login_url(self, url, expected):
        assert is_login_url(url) is expected

    def test_session_cues_authenticate(self):
        assert classify_indicators(AuthIndicators(path="/home", has_logout=True)) == AuthState.AUTHENTICATED

    def test_login_cues_win_over_session_cues(self):
        state = classify_indicators(AuthIndicators(path="/home", has_user_marker=True, has_password_input=True))

        assert state == AuthState.NEEDS_LOGIN

    def test_login_title(self):
        assert classify_indicators(AuthIndicators(path="/", title="Log in to Acme")) == AuthState.NEEDS_LOGIN

    def test_no_cues_is_unknown(self):
        assert classify_indicators(AuthIndicators(path="/about")) == AuthState.UNKNOWN

    def test_from_dict(self):
        parsed = AuthIndicators.from_dict({'path': '/x', 'hasWelcomeText': True})

        assert parsed.has_welcome_text
        assert parsed.session_present


class TestAuthController:
    """Tests for AuthController.authenticate()."""

    @pytest.mark.asyncio
    async def test_already_authenticated(self, controller, credentials):
        page = make_login_page()
        page.context.cookie_jar.append(dict(VALID_COOKIE))
        page.url = DASHBOARD_URL

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert outcome.state == AuthState.AUTHENTICATED
        assert not outcome.form_submitted
        assert page.filled == {}

    @pytest.mark.asyncio
    async def test_login_form_success_caches_session(self, controller, credentials, pool):
        page = make_login_page()

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert outcome.state == AuthState.LOGIN_SUCCEEDED
        assert outcome.history == [
            AuthState.UNKNOWN, AuthState.CHECKING, AuthState.NEEDS_LOGIN,
            AuthState.LOGGING_IN, AuthState.LOGIN_SUCCEEDED,
        ]
        assert outcome.form_submitted
        assert outcome.url == DASHBOARD_URL
        assert page.filled == {DEFAULT_USERNAME_SELECTOR: "u1", DEFAULT_PASSWORD_SELECTOR: "secret"}

        cached = pool.get_cached_session("a.test", "u1")
        assert cached is not None
        assert cached.cookies == [VALID_COOKIE]

    @pytest.mark.asyncio
    async def test_cached_session_skips_login_form(self, controller, credentials, pool, clock):
        pool.cache_session("a.test", "u1", SessionArtifacts(cookies=[dict(VALID_COOKIE)]))
        clock.advance(60)
        page = make_login_page()

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert outcome.state == AuthState.AUTHENTICATED
        assert outcome.used_cache
        assert not outcome.form_submitted
        assert page.filled == {}
        assert ("reload", LOGIN_URL) in page.calls
        assert page.url == DASHBOARD_URL

    @pytest.mark.asyncio
    async def test_expired_session_logs_in_again(self, controller, credentials, pool, clock):
        pool.cache_session("a.test", "u1", SessionArtifacts(cookies=[dict(VALID_COOKIE)]))
        clock.advance(1801)
        page = make_login_page()

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert AuthState.LOGGING_IN in outcome.history
        assert not outcome.used_cache
        assert outcome.form_submitted
        assert outcome.state == AuthState.LOGIN_SUCCEEDED

    @pytest.mark.asyncio
    async def test_rejected_cached_session_is_invalidated(self, controller, credentials, pool):
        stale = dict(VALID_COOKIE, value="expired")
        pool.cache_session("a.test", "u1", SessionArtifacts(cookies=[stale]))
        page = make_login_page()

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert outcome.state == AuthState.LOGIN_SUCCEEDED
        assert not outcome.used_cache
        assert outcome.form_submitted
        assert VALID_COOKIE in pool.get_cached_session("a.test", "u1").cookies

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, controller, credentials, pool):
        page = make_login_page(accept_credentials=False)

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert outcome.state == AuthState.LOGIN_FAILED
        assert outcome.message == "Invalid username or password"
        assert not outcome.is_authenticated
        assert pool.session_count == 0

    @pytest.mark.asyncio
    async def test_missing_login_form(self, controller, credentials):
        page = make_login_page()
        page.present.clear()

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert outcome.state == AuthState.LOGIN_FAILED
        assert outcome.message.startswith("Login form not found")
        assert not outcome.form_submitted

    @pytest.mark.asyncio
    async def test_custom_selectors_and_login_url(self, controller):
        page = make_login_page()
        page.url = "https://a.test/landing"
        page.present = {"#user", "#pass", "#go"}
        page.click_handlers["#go"] = SITE.submit
        credentials = LoginCredentials(
            username="u1",
            password="secret",
            login_url="https://a.test/signin",
            username_selector="#user",
            password_selector="#pass",
            submit_selector="#go",
        )

        outcome = await controller.authenticate(page, credentials, "a.test")

        assert "https://a.test/signin" in page.navigations
        assert page.filled == {"#user": "u1", "#pass": "secret"}
        assert outcome.state == AuthState.LOGIN_SUCCEEDED

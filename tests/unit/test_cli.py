"""Unit tests for the command line layer."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError
from typer.testing import CliRunner

from pageshot import __version__
from pageshot.capture.config import PageshotConfig
from pageshot.capture.engine import CaptureEngine, CaptureEngineConfig
from pageshot.capture.scroll_planner import MEASURE_SCRIPT
from pageshot.cli.main import app, build_request, load_interactions
from pageshot.cli.runner import CaptureRunner, CLIConfig, ExitCode, combined_exit_code, exit_code_for
from pageshot.models.capture import (
    ArtifactKind,
    CaptureArtifact,
    CaptureResult,
    CaptureStatus,
    FailureReason,
)

from tests.fakes import FakeLauncher, FakePage, LoginSite

cli = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ('PAGESHOT_ENV', 'PAGESHOT_CONFIG', 'OPENROUTER_API_KEY'):
        monkeypatch.delenv(name, raising=False)


def result_with(status=CaptureStatus.SUCCESS, code=None, error_artifact=False):
    result = CaptureResult(url="https://a.test/", status=status)
    if code:
        result.failure = FailureReason(code=code, message="boom")
    if error_artifact:
        result.artifacts.append(CaptureArtifact(
            name="error_interaction_1_click.png",
            kind=ArtifactKind.ERROR,
            error="Element not found",
            error_code="element_not_found",
        ))
    return result


class TestExitCodes:

    def test_exit_code_for(self):
        assert exit_code_for(result_with()) == ExitCode.SUCCESS
        assert exit_code_for(result_with(error_artifact=True)) == ExitCode.CAPTURE_ERRORS
        assert exit_code_for(result_with(CaptureStatus.PARTIAL, "page_timeout")) == ExitCode.CAPTURE_ERRORS
        assert exit_code_for(result_with(CaptureStatus.LOGIN_REQUIRED, "login_required")) == ExitCode.ACCESS_DENIED
        assert exit_code_for(result_with(CaptureStatus.FAILED, "login_failed")) == ExitCode.ACCESS_DENIED
        assert exit_code_for(result_with(CaptureStatus.ERROR_PAGE, "navigation_redirected")) == ExitCode.ACCESS_DENIED
        assert exit_code_for(result_with(CaptureStatus.FAILED, "navigation_failed")) == ExitCode.RUNTIME_ERROR

    def test_combined_exit_code_takes_worst(self):
        results = [
            result_with(),
            result_with(error_artifact=True),
            result_with(CaptureStatus.LOGIN_REQUIRED, "login_required"),
        ]

        assert combined_exit_code(results) == ExitCode.ACCESS_DENIED
        assert combined_exit_code([]) == ExitCode.SUCCESS


class TestBuildRequest:

    def test_defaults_from_config(self):
        config = PageshotConfig(output={'viewport': {'width': 1280, 'height': 720}})

        request = build_request("https://a.test/dash", config)

        assert request.viewport.width == 1280
        assert request.viewport.height == 720
        assert request.scroll_screenshots and request.full_page
        assert request.login_credentials is None
        assert request.navigation_flow is None

    def test_credentials_and_flow(self):
        request = build_request(
            "https://a.test/dash",
            PageshotConfig(),
            width=800,
            username="me@a.test",
            password="secret",
            login_url="https://a.test/signin",
            follow=["nav a"],
            max_depth=1,
        )

        assert request.viewport.width == 800
        assert request.has_credentials
        assert request.login_credentials.login_url == "https://a.test/signin"
        assert request.navigation_flow.follow_links == ["nav a"]
        assert request.navigation_flow.max_depth == 1
        assert request.navigation_flow.exclude_patterns == ['/logout', '/signout']
        assert request.navigation_flow.screenshot_each_page

    def test_invalid_url(self):
        with pytest.raises(ValidationError):
            build_request("not-a-url", PageshotConfig())

    def test_invalid_tab_strategy(self):
        with pytest.raises(ValidationError):
            build_request("https://a.test", PageshotConfig(), tab_strategy="guess")


class TestLoadInteractions:

    def test_yaml_list(self, tmp_path):
        path = tmp_path / "steps.yaml"
        path.write_text("- action: click\n  selector: '#go'\n- action: wait\n  value: 500\n")

        assert load_interactions(path) == [
            {'action': 'click', 'selector': '#go'},
            {'action': 'wait', 'value': 500},
        ]

    def test_json_mapping(self, tmp_path):
        path = tmp_path / "steps.json"
        path.write_text(json.dumps({'interactions': [{'action': 'hover', 'selector': '.menu'}]}))

        assert load_interactions(path) == [{'action': 'hover', 'selector': '.menu'}]

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "steps.yaml"
        path.write_text("action: click\n")

        with pytest.raises(ValueError):
            load_interactions(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_interactions(tmp_path / "absent.yaml")


class TestCommands:

    def test_version(self):
        result = cli.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_url_is_config_error(self, tmp_path):
        result = cli.invoke(app, ["capture", "not-a-url", "--config", str(tmp_path / "absent.yaml")])

        assert result.exit_code == ExitCode.CONFIG_ERROR

    def test_bad_interactions_file_is_config_error(self, tmp_path):
        result = cli.invoke(app, [
            "capture", "https://a.test",
            "--config", str(tmp_path / "absent.yaml"),
            "--interactions", str(tmp_path / "absent.yaml"),
        ])

        assert result.exit_code == ExitCode.CONFIG_ERROR

    def test_invalid_config_is_config_error(self, tmp_path):
        path = tmp_path / "capture.yaml"
        path.write_text("pool:\n  max_browsers: -1\n")

        result = cli.invoke(app, ["capture", "https://a.test", "--config", str(path)])

        assert result.exit_code == ExitCode.CONFIG_ERROR

    def test_exit_code_from_runner(self, tmp_path):
        with patch("pageshot.cli.main.CaptureRunner.run", new=AsyncMock(return_value=ExitCode.CAPTURE_ERRORS)):
            result = cli.invoke(app, [
                "capture", "https://a.test",
                "--config", str(tmp_path / "absent.yaml"),
                "--output-dir", str(tmp_path),
            ])

        assert result.exit_code == ExitCode.CAPTURE_ERRORS

    def test_runtime_error(self, tmp_path):
        with patch("pageshot.cli.main.CaptureRunner.run", new=AsyncMock(side_effect=RuntimeError("boom"))):
            result = cli.invoke(app, [
                "capture", "https://a.test",
                "--config", str(tmp_path / "absent.yaml"),
                "--output-dir", str(tmp_path),
            ])

        assert result.exit_code == ExitCode.RUNTIME_ERROR


def measured_page(context):
    return FakePage(context=context, scripts={MEASURE_SCRIPT: {
        'windowScrollHeight': 2600,
        'windowClientHeight': 1000,
        'viewportHeight': 1000,
        'containers': [],
    }})


class TestCaptureRunner:
    """Tests for CaptureRunner.run()."""

    @pytest.mark.asyncio
    async def test_writes_artifacts_and_report(self, tmp_path):
        config = PageshotConfig()
        engine = CaptureEngine(CaptureEngineConfig(), launcher=FakeLauncher(page_factory=measured_page))
        cli_config = CLIConfig(
            requests=[build_request("https://a.test/dashboard", config)],
            output_dir=tmp_path,
            options={'environment': 'test'},
        )
        runner = CaptureRunner(cli_config, config, engine=engine)

        exit_code = await runner.run()

        assert exit_code == ExitCode.SUCCESS
        assert sorted(p.name for p in tmp_path.glob("*.png")) == [
            "001_dashboard_scroll_0_top.png",
            "002_dashboard_scroll_1_800px.png",
            "003_dashboard_scroll_2_1600px.png",
            "004_dashboard_fullpage.png",
        ]
        report = json.loads((tmp_path / "capture_report.json").read_text())
        assert report['total_screenshots'] == 4
        assert report['total_pages'] == 1
        assert report['options'] == {'environment': 'test'}
        assert [entry['type'] for entry in report['results']] == ['top', 'scroll', 'scroll', 'full_page']

    @pytest.mark.asyncio
    async def test_login_wall_exits_access_denied(self, tmp_path):
        site = LoginSite()
        engine = CaptureEngine(
            CaptureEngineConfig(),
            launcher=FakeLauncher(page_factory=lambda context: site.page(context=context)),
        )
        cli_config = CLIConfig(
            requests=[build_request(site.home_url, PageshotConfig())],
            output_dir=tmp_path,
            write_report=False,
        )
        runner = CaptureRunner(cli_config, PageshotConfig(), engine=engine)

        exit_code = await runner.run()

        assert exit_code == ExitCode.ACCESS_DENIED
        assert not (tmp_path / "capture_report.json").exists()
        assert runner.results[0].status == CaptureStatus.LOGIN_REQUIRED

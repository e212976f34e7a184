#!/usr/bin/env python3
"""Main CLI entry point for Pageshot using Typer.

This module provides the command-line interface for capturing pages. It
builds a capture request from command options and configuration defaults,
runs it through the capture engine and writes artifacts plus a run report to
the output directory.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from pydantic import ValidationError
from typing_extensions import Annotated

from .. import __version__
from ..capture.config import ConfigManager, PageshotConfig
from ..models.capture import CaptureRequest
from .runner import CaptureRunner, CLIConfig, ExitCode


# Create the main Typer app
app = typer.Typer(
    name="pageshot",
    help="Pageshot - repeatable browser captures of uncooperative web pages",
    add_completion=False,
    rich_markup_mode="rich"
)


@app.callback()
def main():
    """
    Pageshot - repeatable browser captures of uncooperative web pages.

    Captures scroll frames, full pages, tabs and interaction results with
    adaptive readiness waits, login handling and pooled browsers.
    """
    pass


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Pageshot v{__version__}")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_interactions(path: Path) -> List[Dict[str, Any]]:
    """Read an interaction list from a JSON or YAML file.

    Raises:
        ValueError: unreadable file or not a list
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Cannot read interactions file {path}: {e}")

    if isinstance(data, dict) and 'interactions' in data:
        data = data['interactions']
    if not isinstance(data, list):
        raise ValueError(f"Interactions file {path} must contain a list")
    return data


def build_request(
    url: str,
    config: PageshotConfig,
    scroll: bool = True,
    full_page: bool = True,
    width: Optional[int] = None,
    height: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    login_url: Optional[str] = None,
    analyze: bool = False,
    detect_tabs: bool = False,
    tab_strategy: str = "heuristic",
    interactions: Optional[List[Dict[str, Any]]] = None,
    follow: Optional[List[str]] = None,
    max_depth: int = 2,
) -> CaptureRequest:
    """Build a capture request, filling gaps from configuration defaults.

    Raises:
        pydantic.ValidationError: invalid request values
    """
    viewport = config.output.viewport
    data: Dict[str, Any] = {
        'url': url,
        'scroll_screenshots': scroll,
        'full_page': full_page,
        'viewport': {
            'width': width or viewport.width,
            'height': height or viewport.height,
        },
        'page_analysis': analyze,
        'detect_tabs': detect_tabs,
        'tab_strategy': tab_strategy,
        'interactions': interactions or [],
    }

    if username or password:
        data['login_credentials'] = {
            'username': username or '',
            'password': password or '',
            'login_url': login_url,
        }

    if follow:
        data['navigation_flow'] = {
            'follow_links': follow,
            'max_depth': max_depth,
            'exclude_patterns': config.output.exclude_patterns,
            'screenshot_each_page': True,
        }

    return CaptureRequest.model_validate(data)


@app.command()
def capture(
    url: Annotated[
        str,
        typer.Argument(help="URL to capture")
    ],

    # Capture options
    no_scroll: Annotated[
        bool,
        typer.Option("--no-scroll", help="Skip scroll step captures")
    ] = False,

    no_full_page: Annotated[
        bool,
        typer.Option("--no-full-page", help="Skip the full-page capture")
    ] = False,

    width: Annotated[
        Optional[int],
        typer.Option("--width", help="Viewport width in pixels")
    ] = None,

    height: Annotated[
        Optional[int],
        typer.Option("--height", help="Viewport height in pixels")
    ] = None,

    # Authentication
    username: Annotated[
        Optional[str],
        typer.Option("--username", "-u", help="Login username")
    ] = None,

    password: Annotated[
        Optional[str],
        typer.Option("--password", "-p", help="Login password")
    ] = None,

    login_url: Annotated[
        Optional[str],
        typer.Option("--login-url", help="Login page to use before capturing")
    ] = None,

    # Analysis and interaction
    analyze: Annotated[
        bool,
        typer.Option("--analyze", help="Attach a structural page analysis")
    ] = False,

    detect_tabs: Annotated[
        bool,
        typer.Option("--detect-tabs", help="Detect and capture tab regions")
    ] = False,

    tab_strategy: Annotated[
        str,
        typer.Option("--tab-strategy", help="Tab detection strategy: heuristic or ai")
    ] = "heuristic",

    interactions_file: Annotated[
        Optional[Path],
        typer.Option("--interactions", help="JSON or YAML file with interaction steps")
    ] = None,

    follow: Annotated[
        Optional[List[str]],
        typer.Option("--follow", help="Selector of links to follow (repeatable)")
    ] = None,

    max_depth: Annotated[
        int,
        typer.Option("--max-depth", help="Maximum link-following depth")
    ] = 2,

    # Output and configuration
    output_dir: Annotated[
        Optional[Path],
        typer.Option("--output-dir", "-o", help="Directory for captures and report")
    ] = None,

    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to configuration YAML")
    ] = None,

    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
):
    """
    Capture a page.

    Examples:

        # Scroll frames and full page
        pageshot capture https://example.com

        # Behind a login, with tab captures
        pageshot capture https://app.example.com/dashboard \\
            --username me@example.com --password secret --detect-tabs

        # Scripted interactions
        pageshot capture https://example.com --interactions steps.yaml --no-scroll
    """
    configure_logging(verbose)

    try:
        pageshot_config = ConfigManager(config_file).load_config()
        interactions = load_interactions(interactions_file) if interactions_file else None
        request = build_request(
            url,
            pageshot_config,
            scroll=not no_scroll,
            full_page=not no_full_page,
            width=width,
            height=height,
            username=username,
            password=password,
            login_url=login_url,
            analyze=analyze,
            detect_tabs=detect_tabs,
            tab_strategy=tab_strategy,
            interactions=interactions,
            follow=follow,
            max_depth=max_depth,
        )
    except (ValueError, ValidationError) as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    out = output_dir or Path(pageshot_config.output.directory)
    cli_config = CLIConfig(
        requests=[request],
        output_dir=out,
        report_name=pageshot_config.output.report_name,
        options={
            'environment': pageshot_config.environment,
            'viewport': request.viewport.model_dump(),
            'scroll_screenshots': request.scroll_screenshots,
            'full_page': request.full_page,
        },
    )
    runner = CaptureRunner(cli_config, pageshot_config)

    try:
        exit_code = asyncio.run(runner.run())
    except KeyboardInterrupt:
        typer.echo("❌ Operation interrupted by user", err=True)
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)
    except Exception as e:
        typer.echo(f"❌ Runtime error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(code=ExitCode.RUNTIME_ERROR.value)

    for result in runner.results:
        typer.echo(f"{result.url}: {result.status.value}, {len(result.artifacts)} artifacts")
        for artifact in result.error_artifacts:
            typer.echo(f"  ⚠️  {artifact.name}: {artifact.error}")
        if result.failure is not None:
            typer.echo(f"  ❌ {result.failure.code}: {result.failure.message}")
    typer.echo(f"📋 Report saved to: {runner.report.report_path}")

    raise typer.Exit(code=exit_code.value)


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    app()

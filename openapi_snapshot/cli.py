"""Command line entry point: one-shot snapshot by default, `watch` for the loop."""

import asyncio
import functools
import logging
from typing import Any, Callable

import click

from openapi_snapshot import __version__
from openapi_snapshot.apps.snapshot.pipeline import run_once
from openapi_snapshot.apps.snapshot.scheduler import WatchController
from openapi_snapshot.utils.config import build_config, build_watch_policy, get_settings
from openapi_snapshot.utils.errors import SnapshotError
from openapi_snapshot.utils.logging import setup_logging

logger = logging.getLogger(__name__)

EXAMPLES = """\b
Examples:
  openapi-snapshot
  openapi-snapshot watch
  openapi-snapshot --out openapi/backend_openapi.json --outline-out openapi/backend_openapi.outline.json
  openapi-snapshot --profile outline --out openapi/backend_openapi.outline.json
  openapi-snapshot --url http://localhost:3000/api-docs/openapi.json --out openapi/backend_openapi.json
  openapi-snapshot --minify true --out openapi/backend_openapi.min.json
"""

_COMMON_OPTIONS = [
    click.option("--url", default=None, help="OpenAPI JSON URL."),
    click.option("--out", default=None, help="Output file path."),
    click.option("--outline-out", default=None, help="Also write an outline to this path."),
    click.option("--reduce", default=None, help="Keep only these top-level keys (paths,components)."),
    click.option(
        "--profile",
        type=click.Choice(["full", "outline"]),
        default=None,
        help="Write the full document or its outline. [default: full]",
    ),
    click.option(
        "--minify",
        type=click.BOOL,
        is_flag=False,
        flag_value="true",
        default=None,
        help="Single-line JSON output.",
    ),
    click.option("--timeout-ms", type=click.IntRange(min=1), default=None, help="Request timeout."),
    click.option("--header", "headers", multiple=True, help="Extra request header 'Name: value'. Repeatable."),
    click.option("--stdout", is_flag=True, help="Write to stdout instead of a file."),
    click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)."),
    click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr."),
]


def common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the shared snapshot options to a command."""
    for option in reversed(_COMMON_OPTIONS):
        func = option(func)
    return func


def _merge(parent: dict[str, Any], own: dict[str, Any]) -> dict[str, Any]:
    """Command-level values override group-level ones when given."""
    merged = dict(parent)
    for key, value in own.items():
        if key == "headers":
            merged[key] = tuple(parent.get(key, ())) + tuple(value)
        elif value is not None and value is not False:
            merged[key] = value
    return merged


def _configure_logging(options: dict[str, Any]) -> None:
    settings = get_settings()
    setup_logging(
        level=options.get("log_level") or settings.LOG_LEVEL,
        format_type="json" if options.get("log_json") else settings.LOG_FORMAT,
    )


def _build_config(options: dict[str, Any], watch: bool = False, no_outline: bool = False):
    return build_config(
        settings=get_settings(),
        url=options.get("url"),
        out=options.get("out"),
        outline_out=options.get("outline_out"),
        reduce=options.get("reduce"),
        profile=options.get("profile") or "full",
        minify=bool(options.get("minify")),
        timeout_ms=options.get("timeout_ms"),
        headers=list(options.get("headers") or ()),
        stdout=bool(options.get("stdout")),
        watch=watch,
        no_outline=no_outline,
    )


def exit_on_error(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report SnapshotError and exit with its category's code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except SnapshotError as e:
            click.echo(str(e), err=True)
            raise SystemExit(e.exit_code) from e

    return wrapper


@click.group(invoke_without_command=True, epilog=EXAMPLES)
@click.version_option(version=__version__, prog_name="openapi-snapshot")
@common_options
@click.pass_context
@exit_on_error
def cli(ctx: click.Context, **options: Any) -> None:
    """Fetch and save an OpenAPI JSON snapshot."""
    ctx.ensure_object(dict)
    ctx.obj["options"] = options
    if ctx.invoked_subcommand is not None:
        return

    _configure_logging(options)
    config = _build_config(options)
    written = asyncio.run(run_once(config))
    logger.info("Snapshot written: %s", ", ".join(written))


@cli.command()
@common_options
@click.option("--interval-ms", type=click.IntRange(min=1), default=None, help="Delay between cycles.")
@click.option("--no-outline", is_flag=True, help="Do not write the default outline file.")
@click.pass_context
@exit_on_error
def watch(ctx: click.Context, interval_ms: int | None, no_outline: bool, **options: Any) -> None:
    """Refresh the snapshot on an interval until interrupted."""
    merged = _merge(ctx.obj.get("options", {}), options)
    _configure_logging(merged)
    config = _build_config(merged, watch=True, no_outline=no_outline)
    policy = build_watch_policy(get_settings(), interval_ms)

    controller = WatchController(config, policy)
    asyncio.run(controller.start())


def main() -> None:
    cli(prog_name="openapi-snapshot")

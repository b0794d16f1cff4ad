"""Command-line interface for widgetbridge."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from widgetbridge import __version__
from widgetbridge.config import Config, load_config
from widgetbridge.logging import reset_logging, setup_logging


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="widgetbridge",
        description="Sandboxed widget host: simulator, CSP and document tools",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Extra config file, applied after system/user/project config",
    )
    parser.add_argument(
        "--project",
        type=Path,
        default=None,
        help="Project root holding .widgetbridge/config.yaml (default: cwd)",
    )
    parser.add_argument(
        "--host-origin",
        help="Origin the host page is served from",
    )
    parser.add_argument(
        "--allow-origin",
        action="append",
        default=[],
        metavar="ORIGIN",
        help="Additional trusted origin (repeatable)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    serve_parser = subparsers.add_parser("serve", help="Run the simulator server")
    serve_parser.add_argument("--host", help="Interface to bind")
    serve_parser.add_argument("--port", type=int, help="Port to listen on")

    csp_parser = subparsers.add_parser("csp", help="Print the CSP for a widget bundle")
    csp_parser.add_argument("script_src", help="Widget bundle URL")
    csp_parser.add_argument(
        "--connect",
        action="append",
        default=[],
        metavar="DOMAIN",
        help="Allowed connect origin (repeatable)",
    )
    csp_parser.add_argument(
        "--resource",
        action="append",
        default=[],
        metavar="DOMAIN",
        help="Allowed image/font/media origin (repeatable)",
    )

    render_parser = subparsers.add_parser("render", help="Write the bootstrap document")
    render_parser.add_argument("script_src", help="Widget bundle URL")
    render_parser.add_argument("--theme", default=None, help="light or dark")
    render_parser.add_argument(
        "--output", "-o",
        type=Path,
        help="Output file (default: stdout)",
    )

    check_parser = subparsers.add_parser("check-url", help="Check a URL against the allow-list")
    check_parser.add_argument("url", help="Script or frame URL")

    return parser


def _build_config(parsed: argparse.Namespace) -> Config:
    config = load_config(project_root=parsed.project or Path.cwd(), config_path=parsed.config)
    if parsed.host_origin:
        config.security.host_origin = parsed.host_origin
    if parsed.allow_origin:
        config.security.allowed_origins = [*config.security.allowed_origins, *parsed.allow_origin]
    if parsed.quiet:
        config.logging.verbose = 0
    elif parsed.verbose:
        config.logging.verbose = min(2 + parsed.verbose, 4)
    if getattr(parsed, "host", None):
        config.server.host = parsed.host
    if getattr(parsed, "port", None):
        config.server.port = parsed.port
    return config


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    config = _build_config(parsed)
    reset_logging()
    setup_logging(config.logging)

    out = Console(soft_wrap=True, highlight=False, emoji=False)
    err = Console(stderr=True, highlight=False)

    if parsed.command == "serve":
        try:
            return asyncio.run(_serve(config, err))
        except KeyboardInterrupt:
            return 0
    elif parsed.command == "csp":
        return _print_csp(config, parsed.script_src, parsed.connect, parsed.resource, out)
    elif parsed.command == "render":
        return _render(config, parsed.script_src, parsed.theme, parsed.output, out, err)
    elif parsed.command == "check-url":
        return _check_url(config, parsed.url, out)
    else:
        parser.print_help()
        return 1


async def _serve(config: Config, console: Console) -> int:
    from widgetbridge.host import HostSession
    from widgetbridge.server import SimulatorServer, create_app

    async with HostSession(config) as session:
        server = SimulatorServer(create_app(session, config))
        await server.start_server(config.server.host, config.server.port)
        console.print(
            f"[bold green]Simulator[/bold green] on "
            f"http://{config.server.host}:{config.server.port}  [dim](Ctrl+C to stop)[/dim]"
        )
        try:
            await server.serve_forever()
        except asyncio.CancelledError:
            pass
        finally:
            await server.stop_server()
    return 0


def _print_csp(
    config: Config,
    script_src: str,
    connect: list[str],
    resource: list[str],
    console: Console,
) -> int:
    from widgetbridge.document.builder import DocumentBuilder
    from widgetbridge.security.csp import ResourceCSP

    builder = DocumentBuilder.from_config(config)
    csp = ResourceCSP(connect_domains=connect, resource_domains=resource)
    console.print(builder.csp_for(script_src, csp), markup=False)
    return 0


def _render(
    config: Config,
    script_src: str,
    theme: str | None,
    output: Path | None,
    out: Console,
    err: Console,
) -> int:
    from widgetbridge.document.builder import DocumentBuilder

    builder = DocumentBuilder.from_config(config)
    allowed = builder.policy.is_allowed_url(script_src)
    document = builder.build(script_src, theme or config.context.theme)

    if output is not None:
        output.write_text(document, encoding="utf-8")
        err.print(f"Wrote {output}", markup=False)
    else:
        out.print(document, markup=False)

    if not allowed:
        err.print("[red]Script source not allowed[/red]; wrote the error document")
        return 1
    return 0


def _check_url(config: Config, url: str, console: Console) -> int:
    from widgetbridge.security.origins import OriginPolicy

    policy = OriginPolicy.from_config(config.security)
    if policy.is_allowed_url(url):
        console.print(f"[green]allowed[/green] {escape(url)}")
        return 0
    console.print(f"[red]rejected[/red] {escape(url)}")
    return 1

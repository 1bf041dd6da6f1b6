"""
Command-line interface for Formulary.

This module provides the command-line entry point for rendering, checking
and installing release descriptors.
"""

import asyncio
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Annotated, List, Optional

import keyring
import orjson
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from formulary_py import __version__
from formulary_py.checksum import ChecksumMismatchError
from formulary_py.config import FormularyConfig
from formulary_py.descriptor import DescriptorError, ReleaseDescriptor
from formulary_py.descriptor.validate import ERROR, is_valid, validate
from formulary_py.fetch import ArtifactFetcher, FetchError, VerifyResult
from formulary_py.formula.parse import parse_formula_file
from formulary_py.formula.render import render_formula
from formulary_py.install import InstallError, install_release
from formulary_py.platform import Platform, detect_platform, parse_platform
from formulary_py.release import build_descriptor, bump as bump_descriptor, load_checksums

# Set up the console and logger
console = Console()
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)
logger = logging.getLogger("formulary")

TOKEN_ENV_VAR = "FORMULARY_GITHUB_TOKEN"
KEYRING_SERVICE = "FORMULARY_GITHUB_TOKEN"
KEYRING_ACCOUNT = "formulary"

# Create the Typer app
app = typer.Typer(
    help="Release descriptors for prebuilt binaries: render, check, install.",
    add_completion=False,
)


def log_error(message: str) -> None:
    """Log an error message to both logger and console."""
    logger.error(message)
    console.print(f"[red]{message}[/red]")
    return None


def get_github_token(token: Optional[str]) -> Optional[str]:
    """
    Get the GitHub token used for release downloads.

    The order of precedence is:
    1. Command-line argument
    2. FORMULARY_GITHUB_TOKEN environment variable
    3. Keyring
    """
    value = token or os.environ.get(TOKEN_ENV_VAR)
    if not value:
        value = keyring.get_password(KEYRING_SERVICE, KEYRING_ACCOUNT)
        if value:
            logger.debug("Loaded GitHub token from keyring.")
    return value or None


def get_config(ctx: typer.Context) -> FormularyConfig:
    """Return the config loaded by the callback, or the on-disk default."""
    if isinstance(ctx.obj, FormularyConfig):
        return ctx.obj
    return FormularyConfig.load()


def load_descriptor(path: str) -> ReleaseDescriptor:
    """Load a descriptor from a formula (``.rb``) or a YAML descriptor file."""
    file_path = Path(path).expanduser()
    if file_path.suffix == ".rb":
        return parse_formula_file(file_path)
    return ReleaseDescriptor.from_file(file_path)


def load_or_exit(path: str) -> ReleaseDescriptor:
    try:
        return load_descriptor(path)
    except DescriptorError as e:
        log_error(f"Could not load {path}: {e}")
        raise typer.Exit(1) from None


def resolve_platform(value: Optional[str]) -> Platform:
    """Parse ``--platform`` or detect the host platform."""
    try:
        return parse_platform(value) if value else detect_platform()
    except ValueError as e:
        log_error(str(e))
        raise typer.Exit(1) from None


def emit(text: str, out: Optional[str]) -> None:
    """Write *text* to *out*, or to stdout when no file is given."""
    if out:
        out_path = Path(out).expanduser()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text, encoding="utf-8")
        logger.info(f"Wrote {out_path}")
    else:
        typer.echo(text, nl=False)


def verify_artifacts(
    descriptor: ReleaseDescriptor,
    platforms: List[Platform],
    dest_dir: Path,
    timeout: float,
    token: Optional[str],
) -> List[VerifyResult]:
    """Download and verify the artifacts for *platforms* (all rules if empty)."""
    if platforms:
        rules = [descriptor.select(p) for p in platforms]
    else:
        rules = list(descriptor.rules)

    async def _run() -> List[VerifyResult]:
        async with ArtifactFetcher(timeout=timeout, token=token) as fetcher:
            return await fetcher.verify_rules(rules, dest_dir)

    return asyncio.run(_run())


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output."
    ),
    json_logs: bool = typer.Option(
        False, "--json", help="Output logs in JSON format."
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the config file (default: ~/.config/formulary/config.yaml).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show the application version and exit."
    ),
) -> None:
    """
    Formulary: describe, verify and install prebuilt release binaries.
    """
    if version:
        console.print(f"Formulary version: {__version__}")
        raise typer.Exit()

    # Configure logging level based on verbosity
    if verbose:
        logger.setLevel(logging.DEBUG)
        logging.getLogger("formulary_py").setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    # Configure JSON logging if requested
    if json_logs:
        for handler in list(logging.root.handlers):
            logging.root.removeHandler(handler)
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stderr,
        )
        logger.debug("JSON logging enabled")

    ctx.obj = FormularyConfig.load(Path(config).expanduser() if config else None)


@app.command()
def render(
    ctx: typer.Context,
    descriptor_file: Annotated[
        str, typer.Argument(help="YAML release descriptor to render.")
    ],
    out: Annotated[
        Optional[str],
        typer.Option("--out", "-o", help="Write the formula here instead of stdout."),
    ] = None,
    generator: Annotated[
        Optional[str],
        typer.Option("--generator", help="Tool name for the DO NOT EDIT header."),
    ] = None,
) -> None:
    """
    Render a release descriptor as a Homebrew formula.
    """
    cfg = get_config(ctx)
    descriptor = load_or_exit(descriptor_file)

    problems = validate(descriptor, cfg.matrix)
    if not is_valid(problems):
        for problem in problems:
            if problem.severity == ERROR:
                log_error(f"{descriptor_file}: {problem.message}")
        raise typer.Exit(1)

    emit(render_formula(descriptor, generator or cfg.generator), out)


@app.command()
def show(
    formula_file: Annotated[
        str, typer.Argument(help="Formula (.rb) or YAML descriptor to show.")
    ],
    json_output: Annotated[
        bool, typer.Option("--json", help="Output the descriptor as JSON.")
    ] = False,
) -> None:
    """
    Show the release described by a formula or descriptor.
    """
    descriptor = load_or_exit(formula_file)

    if json_output:
        data = descriptor.to_dict()
        typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())
        return

    table = Table(title=f"{descriptor.name} {descriptor.version}")
    table.add_column("Platform", no_wrap=True)
    table.add_column("Condition")
    table.add_column("URL", overflow="fold")
    table.add_column("sha256", overflow="fold")
    table.add_column("Binary", no_wrap=True)
    for rule in descriptor.rules:
        table.add_row(
            rule.label,
            rule.predicate.condition(),
            rule.url,
            rule.sha256,
            rule.binary,
        )
    if descriptor.desc:
        console.print(descriptor.desc)
    if descriptor.homepage:
        console.print(descriptor.homepage)
    console.print(table)


@app.command()
def lint(
    ctx: typer.Context,
    descriptor_file: Annotated[
        str, typer.Argument(help="Formula (.rb) or YAML descriptor to check.")
    ],
    strict: Annotated[
        bool, typer.Option("--strict", help="Treat warnings as failures.")
    ] = False,
) -> None:
    """
    Check a descriptor's platform rules and checksums.
    """
    cfg = get_config(ctx)
    descriptor = load_or_exit(descriptor_file)
    problems = validate(descriptor, cfg.matrix)

    for problem in problems:
        color = "red" if problem.severity == ERROR else "yellow"
        console.print(f"[{color}]{problem.severity}[/{color}]: {problem.message}")

    if not is_valid(problems, strict=strict):
        raise typer.Exit(1)

    console.print(
        f"{descriptor.name} {descriptor.version}: "
        f"{len(descriptor.rules)} rules OK"
    )


@app.command(name="select")
def select_rule(
    descriptor_file: Annotated[
        str, typer.Argument(help="Formula (.rb) or YAML descriptor.")
    ],
    platform: Annotated[
        Optional[str],
        typer.Option(
            "--platform", "-p", help="Platform as os/arch, e.g. linux/arm64 (default: this machine)."
        ),
    ] = None,
) -> None:
    """
    Show which artifact would be installed on a platform.
    """
    descriptor = load_or_exit(descriptor_file)
    target = resolve_platform(platform)

    try:
        rule = descriptor.select(target)
    except DescriptorError as e:
        log_error(str(e))
        raise typer.Exit(1) from None

    typer.echo(f"platform: {target}")
    typer.echo(f"rule:     {rule.label}")
    typer.echo(f"url:      {rule.url}")
    typer.echo(f"sha256:   {rule.sha256}")
    typer.echo(f"binary:   {rule.binary}")


@app.command()
def verify(
    ctx: typer.Context,
    descriptor_file: Annotated[
        str, typer.Argument(help="Formula (.rb) or YAML descriptor.")
    ],
    platforms: Annotated[
        Optional[List[str]],
        typer.Option(
            "--platform", "-p", help="Only verify these platforms (default: all rules)."
        ),
    ] = None,
    dest: Annotated[
        Optional[str],
        typer.Option("--dest", "-d", help="Keep downloads here instead of a temp dir."),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option("--token", help=f"GitHub token. Uses {TOKEN_ENV_VAR} if not set."),
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", help="Output results as JSON.")
    ] = False,
) -> None:
    """
    Download every artifact and check it against its sha256.
    """
    cfg = get_config(ctx)
    descriptor = load_or_exit(descriptor_file)
    targets = [resolve_platform(p) for p in platforms or []]
    github_token = get_github_token(token)

    logger.info(f"Verifying {descriptor.name} {descriptor.version}...")
    try:
        if dest:
            results = verify_artifacts(
                descriptor, targets, Path(dest).expanduser(), cfg.timeout, github_token
            )
        else:
            with tempfile.TemporaryDirectory(prefix="formulary-verify-") as temp_dir:
                results = verify_artifacts(
                    descriptor, targets, Path(temp_dir), cfg.timeout, github_token
                )
    except DescriptorError as e:
        log_error(str(e))
        raise typer.Exit(1) from None

    if json_output:
        typer.echo(
            orjson.dumps(
                [r.to_dict() for r in results], option=orjson.OPT_INDENT_2
            ).decode()
        )
    else:
        table = Table(title=f"{descriptor.name} {descriptor.version} artifacts")
        table.add_column("Platform", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Detail", overflow="fold")
        for result in results:
            status = "[green]OK[/green]" if result.ok else "[red]FAILED[/red]"
            table.add_row(result.label, status, result.error or result.sha256 or "")
        console.print(table)

    if not all(r.ok for r in results):
        raise typer.Exit(1)


@app.command()
def install(
    ctx: typer.Context,
    descriptor_file: Annotated[
        str, typer.Argument(help="Formula (.rb) or YAML descriptor.")
    ],
    bin_dir: Annotated[
        Optional[str],
        typer.Option("--bin-dir", "-b", help="Install directory (default: ~/.local/bin)."),
    ] = None,
    platform: Annotated[
        Optional[str],
        typer.Option("--platform", "-p", help="Install for this os/arch instead of the host."),
    ] = None,
    token: Annotated[
        Optional[str],
        typer.Option("--token", help=f"GitHub token. Uses {TOKEN_ENV_VAR} if not set."),
    ] = None,
) -> None:
    """
    Fetch, verify and install the binary for this machine.
    """
    cfg = get_config(ctx)
    descriptor = load_or_exit(descriptor_file)
    target = resolve_platform(platform)
    target_dir = Path(bin_dir).expanduser() if bin_dir else cfg.bin_dir

    fetcher = ArtifactFetcher(timeout=cfg.timeout, token=get_github_token(token))
    try:
        installed = install_release(
            descriptor, target, target_dir, cfg.cache_dir, fetcher
        )
    except (
        DescriptorError,
        FetchError,
        ChecksumMismatchError,
        InstallError,
    ) as e:
        log_error(f"Install failed: {e}")
        raise typer.Exit(1) from None

    console.print(
        f"Installed {descriptor.name} {descriptor.version} to {installed}"
    )


@app.command()
def bump(
    ctx: typer.Context,
    descriptor_file: Annotated[
        str, typer.Argument(help="Current formula (.rb) or YAML descriptor.")
    ],
    version: Annotated[str, typer.Option("--version", help="The new release version.")],
    checksums: Annotated[
        str, typer.Option("--checksums", help="The new release's checksums.txt.")
    ],
    out: Annotated[
        Optional[str],
        typer.Option("--out", "-o", help="Write the new release here instead of stdout."),
    ] = None,
) -> None:
    """
    Produce the descriptor that supersedes this one for a new release.
    """
    current = load_or_exit(descriptor_file)
    try:
        new = bump_descriptor(current, version, load_checksums(checksums))
    except DescriptorError as e:
        log_error(f"Cannot bump {current.name}: {e}")
        raise typer.Exit(1) from None

    if descriptor_file.endswith(".rb"):
        emit(render_formula(new, get_config(ctx).generator), out)
    else:
        emit(new.to_yaml(), out)


@app.command(name="from-checksums")
def from_checksums(
    ctx: typer.Context,
    name: Annotated[str, typer.Option("--name", help="Package name.")],
    version: Annotated[str, typer.Option("--version", help="Release version.")],
    homepage: Annotated[
        str, typer.Option("--homepage", help="GitHub repository URL.")
    ],
    checksums: Annotated[
        str, typer.Option("--checksums", help="The release's checksums.txt.")
    ],
    desc: Annotated[str, typer.Option("--desc", help="One-line description.")] = "",
    binary: Annotated[
        Optional[str],
        typer.Option("--binary", help="Executable name (default: package name)."),
    ] = None,
    output_format: Annotated[
        str, typer.Option("--format", "-f", help="Output format: formula or yaml.")
    ] = "formula",
    out: Annotated[
        Optional[str],
        typer.Option("--out", "-o", help="Write here instead of stdout."),
    ] = None,
) -> None:
    """
    Build a release descriptor from a GoReleaser checksums file.
    """
    cfg = get_config(ctx)
    if output_format not in ("formula", "yaml"):
        log_error(f"Unknown format {output_format!r}; use 'formula' or 'yaml'.")
        raise typer.Exit(1)

    try:
        descriptor = build_descriptor(
            name,
            desc,
            homepage,
            version,
            load_checksums(checksums),
            binary=binary,
            matrix=cfg.matrix,
        )
    except DescriptorError as e:
        log_error(str(e))
        raise typer.Exit(1) from None

    if output_format == "yaml":
        emit(descriptor.to_yaml(), out)
    else:
        emit(render_formula(descriptor, cfg.generator), out)


@app.command()
def login(
    token: str = typer.Option(
        ...,
        "--token",
        prompt="GitHub token",
        hide_input=True,
        help="GitHub token for release downloads.",
    ),
) -> None:
    """
    Store a GitHub token in the system keychain.
    """
    keyring.set_password(KEYRING_SERVICE, KEYRING_ACCOUNT, token)
    logger.info("Token saved to system keychain.")
    console.print("GitHub token saved.")


@app.command()
def version() -> None:
    """Show the application version and exit."""
    console.print(f"Formulary version: {__version__}")


if __name__ == "__main__":
    app()

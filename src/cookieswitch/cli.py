"""cookieswitch command-line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .compiler import RuleCompiler, combined_pattern
from .exceptions import CookieSwitchError
from .interceptor import RequestInterceptor
from .models import ResourceType
from .registry import PROFILE_DIR, ProfileRegistry, discover_registry
from .stores import MemoryFilterEngine, RegistryAccountStore, RegistryRuleStore

app = typer.Typer(
    name="cookieswitch",
    help="cookieswitch: per-URL account switching by cookie rewriting",
    add_completion=False,
)
console = Console()


def _get_version_string() -> str:
    """Get version string from package metadata or pyproject.toml."""
    try:
        return get_version("cookieswitch")
    except PackageNotFoundError:
        pass

    # Development checkout without an install
    pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        content = pyproject_path.read_text()
        match = re.search(r'version\s*=\s*["\']([^"\']+)["\']', content)
        if match:
            return f"{match.group(1)} (development)"

    return "unknown"


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"cookieswitch version {_get_version_string()}")
        raise typer.Exit


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """cookieswitch: per-URL account switching by cookie rewriting."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _resolve_registry(registry_path: Path | None) -> ProfileRegistry:
    if registry_path is None:
        registry_path = discover_registry()
    if registry_path is None or not registry_path.exists():
        console.print(
            "[red]Error:[/red] Profile registry not found "
            f"(expected {PROFILE_DIR} here or in a parent directory)",
        )
        raise typer.Exit(1)
    return ProfileRegistry(registry_path)


def _compiler_for(registry: ProfileRegistry) -> RuleCompiler:
    return RuleCompiler(RegistryAccountStore(registry), RegistryRuleStore(registry))


@app.command()
def init(
    path: Path = typer.Option(
        Path.cwd(),
        "--path",
        "-p",
        help="Directory to create the profile registry in",
    ),
    origin: str = typer.Option(
        "https://github.com",
        "--origin",
        help="Origin whose requests are rewritten",
    ),
) -> None:
    """Initialize a profile registry with starter settings and rules."""
    registry_path = path / PROFILE_DIR

    if registry_path.exists():
        console.print(
            f"[yellow]Warning:[/yellow] Registry exists at {registry_path}",
        )
        if not typer.confirm("Overwrite existing files?"):
            console.print("Initialization cancelled")
            return

    settings_content = f"""\
# cookieswitch settings
# =====================
# Cookie names below are the ones whose changes trigger an account re-sync.
version: 1.0.0
settings:
  origin: "{origin}"
  identity_cookie: dotcom_user
  session_cookie: user_session
  sso_cookie: _gh_sso
  login_flag_cookie: logged_in
  debounce_ms: 300
  badge_label_length: 2
"""

    rules_content = """\
# Auto-switch rules
# =================
# Order matters: the first matching rule wins, and a rule's id in the
# filtering engine is its position in this list.
#
#   - account: "login"                  # Account whose cookies are sent
#     urlPattern: "^https://..."        # Regular expression on the URL
rules: []
"""

    try:
        registry = ProfileRegistry(registry_path)
        registry_path.mkdir(parents=True, exist_ok=True)
        registry.write_schemas()
        (registry_path / "settings.yaml").write_text(settings_content, encoding="utf-8")
        (registry_path / "rules.yaml").write_text(rules_content, encoding="utf-8")
        registry.save_accounts([])
    except OSError as e:
        console.print(f"[red]Error:[/red] Failed to create profile registry: {e}")
        raise typer.Exit(1) from e
    except CookieSwitchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]✓[/green] Registry initialized at {registry_path}")
    console.print("Created files:")
    console.print("  • settings.yaml (origin and auth cookie names)")
    console.print("  • rules.yaml (auto-switch rules)")
    console.print("  • accounts.yaml (account snapshots)")
    console.print("  • schemas/ (validation schemas)")


@app.command(name="compile")
def compile_rules(
    registry_path: Path | None = typer.Option(
        None,
        "--registry",
        help="Profile registry path (defaults to ./.cookieswitch/profile)",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the compiled rules to this file instead of stdout",
    ),
) -> None:
    """Compile auto-switch rules into declarative filter rules (JSON)."""
    registry = _resolve_registry(registry_path)
    try:
        compiled = asyncio.run(_compiler_for(registry).build_add_rules())
    except CookieSwitchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    payload = json.dumps([rule.to_platform() for rule in compiled], indent=2)
    if output is None:
        typer.echo(payload)
        return

    output.write_text(payload + "\n", encoding="utf-8")
    console.print(f"[green]✓[/green] {len(compiled)} rule(s) written to {output}")


@app.command()
def match(
    url: str = typer.Argument(..., help="Request URL to evaluate"),
    registry_path: Path | None = typer.Option(
        None,
        "--registry",
        help="Profile registry path",
    ),
    resource_type: ResourceType = typer.Option(
        ResourceType.MAIN_FRAME,
        "--type",
        "-t",
        help="Resource type of the request",
    ),
) -> None:
    """Show which account a request URL would be sent as."""
    registry = _resolve_registry(registry_path)

    async def _evaluate() -> tuple[str | None, str | None, int | None]:
        compiler = _compiler_for(registry)
        settings = registry.load_settings()
        interceptor = RequestInterceptor(settings, compiler.rules, compiler)
        rule = await interceptor.find_rule(url)
        cookie_value = await compiler.build_cookie_value(rule.account) if rule else None

        engine = MemoryFilterEngine()
        await engine.update_dynamic_rules([], await compiler.build_add_rules())
        installed = engine.match(url, resource_type)
        return (
            rule.account if rule else None,
            cookie_value,
            installed.id if installed else None,
        )

    try:
        account, cookie_value, rule_id = asyncio.run(_evaluate())
    except CookieSwitchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if account is None:
        console.print(f"No auto-switch rule matches {url}")
        raise typer.Exit(2)

    console.print(f"[bold]Account:[/bold] {account}")
    if rule_id is not None:
        console.print(f"[bold]Filter rule:[/bold] #{rule_id}")
    if cookie_value:
        console.print(f"[bold]Cookie:[/bold] {cookie_value}")
    else:
        console.print("[yellow]No cookies stored for this account; header left unchanged[/yellow]")


@app.command()
def doctor(
    registry_path: Path | None = typer.Option(
        None,
        "--registry",
        help="Profile registry path",
    ),
) -> None:
    """Show effective settings, accounts and compiled rules."""
    registry = _resolve_registry(registry_path)

    try:
        settings = registry.load_settings()
        accounts = registry.load_accounts()
        rules = registry.load_rules()
        compiled = asyncio.run(_compiler_for(registry).build_add_rules(rules))
    except CookieSwitchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    table = Table(title="cookieswitch doctor")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Origin", settings.origin)
    table.add_row("Auth Cookies", ", ".join(sorted(settings.auth_cookie_names)))
    table.add_row("Debounce", f"{settings.debounce_ms} ms")
    table.add_row("Accounts", str(len(accounts)))
    table.add_row("Rules", str(len(rules)))
    table.add_row("Compiled Rules", str(len(compiled)))
    console.print(table)

    compiled_ids = {rule.id for rule in compiled}
    console.print("\n[bold]Rules:[/bold]")
    for index, rule in enumerate(rules):
        rule_id = index + 1
        if rule_id in compiled_ids:
            status = "[green]active[/green]"
        else:
            status = "[yellow]skipped (no cookies)[/yellow]"
        console.print(f"  #{rule_id} {rule.account}: {combined_pattern(rule)} {status}")


@app.command()
def version() -> None:
    """Show cookieswitch version information."""
    console.print(f"cookieswitch version {_get_version_string()}")


def main() -> None:
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()

"""CLI entrypoint for the plugin tools."""

from pathlib import Path

import click
from dotenv import load_dotenv

from assistant_plugin_tools.config import ConfigError, load_config, load_settings
from assistant_plugin_tools.constants import DEFAULT_FALLBACK_CHAIN_CSV

# Load .env file on CLI startup
load_dotenv()


@click.group()
@click.version_option(package_name="assistant-plugin-tools")
def cli():
    """Plugin tools - live data injection, model fallback, self-update."""
    pass


@cli.command()
def check_config():
    """Check if required environment variables are configured."""
    try:
        load_config(require_all=True)
        settings = load_settings()
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    click.echo("Configuration loaded successfully!")
    click.echo("  API key: [set]")
    click.echo(f"  Fallback chain: {', '.join(settings.fallback_chain)}")
    click.echo(f"  Rate limit retries: {settings.retry_count}")
    click.echo(f"  Backoff: {settings.initial_delay_ms}ms initial, {settings.max_delay_ms}ms max")


@cli.command("live-data")
@click.argument("template", required=False, type=click.Path(exists=True, dir_okay=False))
def live_data(template: str):
    """Resolve !command lines in a template.

    TEMPLATE: Path to the template file (reads stdin when omitted)

    Each `!command` line outside fenced code blocks is executed and
    replaced with its output in a <live-data> tag.
    """
    from assistant_plugin_tools.live_data import resolve_live_data, resolve_live_data_file

    if template:
        output = resolve_live_data_file(Path(template))
    else:
        output = resolve_live_data(click.get_binary_stream("stdin").read().decode("utf-8"))

    click.echo(output, nl=False)


@cli.group()
def codex():
    """Code generation model commands."""
    pass


@codex.command("ask")
@click.argument("prompt")
@click.option(
    "--model", "model_id",
    default=None,
    help="Use only this model (retried on rate limits). Disables the fallback chain. Defaults to the settings file's model, if any.",
)
@click.option(
    "--fallback-chain",
    default=None,
    help=f"Comma-separated models to try in order (default: {DEFAULT_FALLBACK_CHAIN_CSV})",
)
@click.option(
    "--cwd",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory to include as context",
)
def codex_ask(prompt: str, model_id: str, fallback_chain: str, cwd: str):
    """Send a prompt to the code generation model with backoff and fallback."""
    from assistant_plugin_tools.backoff import execute_with_fallback
    from assistant_plugin_tools.model_client import ModelClientError

    try:
        settings = load_settings()
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    chain = settings.fallback_chain
    if fallback_chain:
        chain = [m.strip() for m in fallback_chain.split(",") if m.strip()]
        if not chain:
            click.echo("Error: --fallback-chain needs at least one model.", err=True)
            raise SystemExit(1)

    try:
        result = execute_with_fallback(
            prompt,
            model=model_id or settings.model,
            cwd=cwd,
            fallback_chain=chain,
            max_retries=settings.retry_count,
            initial_delay=settings.initial_delay_ms,
            max_delay=settings.max_delay_ms,
        )
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    except ModelClientError as e:
        click.echo(f"Model client error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if result.used_fallback:
        click.echo(f"[fallback: answered by {result.actual_model}]", err=True)
    click.echo(result.response)


@cli.group()
def update():
    """Self-update commands."""
    pass


@update.command("check")
@click.option("--force", is_flag=True, help="Check even if checked recently")
def update_check(force: bool):
    """Check whether a newer release is available."""
    from assistant_plugin_tools.auto_update import (
        UpdateError,
        check_for_updates,
        record_update_check,
        should_check_for_updates,
    )

    if not force and not should_check_for_updates():
        click.echo("Checked recently. Use --force to check again.")
        return

    try:
        result = check_for_updates()
    except UpdateError as e:
        click.echo(f"Update check failed: {e}", err=True)
        raise SystemExit(1)

    record_update_check(latest_version=result.latest_version)

    click.echo(f"  Installed: {result.current_version}")
    click.echo(f"  Latest:    {result.latest_version}")
    if result.update_available:
        click.echo("\nUpdate available. Run 'plugin-tools update run' to install it.")
        if result.release and result.release.html_url:
            click.echo(f"  Release notes: {result.release.html_url}")
    else:
        click.echo("\nUp to date.")


@update.command("run")
@click.option("--verbose", is_flag=True, help="Print each step")
def update_run(verbose: bool):
    """Install the latest release and refresh hooks."""
    from assistant_plugin_tools.auto_update import perform_update

    click.echo("Updating...")
    result = perform_update(verbose=verbose)

    if not result.success:
        click.echo(f"Update failed: {result.message}", err=True)
        for error in result.errors:
            click.echo(f"  - {error}", err=True)
        raise SystemExit(1)

    click.echo(result.message)


@cli.command("install")
@click.option("--force", is_flag=True, help="Reinstall even if already installed")
@click.option("--force-hooks", is_flag=True, help="Overwrite modified hook files")
@click.option("--skip-host-check", is_flag=True, help="Do not require the host CLI on PATH")
@click.option("--verbose", is_flag=True, help="Print each step")
def install_cmd(force: bool, force_hooks: bool, skip_host_check: bool, verbose: bool):
    """Install the plugin hook scripts."""
    from assistant_plugin_tools.installer import HOOKS_DIR, install

    click.echo(f"Installing hooks into: {HOOKS_DIR}")
    result = install(
        force=force,
        verbose=verbose,
        skip_host_check=skip_host_check,
        force_hooks=force_hooks,
    )

    for conflict in result.hook_conflicts:
        click.echo(f"  Conflict (use --force-hooks to overwrite): {conflict}", err=True)

    if not result.success:
        click.echo(f"Install failed: {result.message}", err=True)
        for error in result.errors:
            click.echo(f"  - {error}", err=True)
        raise SystemExit(1)

    click.echo(result.message)


if __name__ == "__main__":
    cli()

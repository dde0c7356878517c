"""comfyui-firewall: block internet access for the ComfyUI container while keeping the browser UI."""

from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from comfyui_firewall.config import FirewallConfig, configure_logging, load_and_validate_config
from comfyui_firewall.docker_manager import DockerManager, ProbeOutcome
from comfyui_firewall.exceptions import (
    ContainerRuntimeError,
    FirewallCommandError,
    InsufficientPrivilege,
    WorkloadNotRunning,
)
from comfyui_firewall.firewall_manager import FirewallManager
from comfyui_firewall.isolation import IsolationState, IsolationToggle

PROG = "comfyui-firewall"

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name=PROG,
    help=(
        "Block internet access for the ComfyUI Docker container while keeping the browser UI working.\n\n"
        "Rules do not survive a reboot. Run 'on' again after restarting."
    ),
    no_args_is_help=True,
)


def build_toggle(config: FirewallConfig) -> IsolationToggle:
    return IsolationToggle(
        config,
        DockerManager(config.container_name),
        FirewallManager(chain=config.chain, iptables_binary=config.iptables_binary),
    )


def info(message: str) -> None:
    console.print(f"[green]✔[/green] {message}")


def warn(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def fail(error: Exception, remediation: str | None = None) -> typer.Exit:
    err_console.print(f"[red]ERROR:[/red] {escape(str(error))}")
    if remediation:
        err_console.print(f"  {escape(remediation)}")
    return typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    container: Annotated[
        str | None, typer.Option("--container", "-c", help="Container name (must match docker-compose.yml)")
    ] = None,
    tag: Annotated[str | None, typer.Option("--tag", "-t", help="Comment used to tag the firewall rules")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")] = False,
) -> None:
    """Toggle network isolation for the ComfyUI container."""
    try:
        config = load_and_validate_config()
    except ValueError as e:
        raise fail(e, "Fix the environment or .env file and try again.") from None

    if container:
        config.container_name = container
    if tag:
        config.tag = tag

    configure_logging("DEBUG" if verbose else config.log_level)
    ctx.obj = config


@app.command()
def enable(
    ctx: typer.Context,
    no_verify: Annotated[bool, typer.Option("--no-verify", help="Skip the connectivity probe")] = False,
) -> None:
    """Block internet (browser UI keeps working)."""
    config: FirewallConfig = ctx.obj
    toggle = build_toggle(config)

    try:
        result = toggle.enable(verify=not no_verify)
    except WorkloadNotRunning as e:
        raise fail(e, e.remediation) from None
    except InsufficientPrivilege as e:
        raise fail(e, f"Run with elevated privileges:  sudo {PROG} {ctx.info_name}") from None
    except (ContainerRuntimeError, FirewallCommandError) as e:
        raise fail(e) from None

    if result.replaced:
        warn("Replaced existing rules (container may have a new IP).")
        for address in sorted({str(rule.source_address) for rule in result.removed}):
            info(f"Removed rules for {address}")
        for address in result.partial_addresses:
            warn(f"Only part of the rule pair was present for {address}.")
        for rule in result.failed:
            warn(f"Could not remove stale rule: {escape(rule.text)}")
        if result.failed:
            warn("More than one rule pair is now installed. Run 'status' to inspect.")

    console.print(f"[bold]Blocking internet for '{escape(config.container_name)}' ({result.address})[/bold]")
    console.print()
    info(f"Firewall ON: internet blocked for {escape(config.container_name)}")
    console.print(f"  Browser UI:  {config.ui_url}  (still works)")
    console.print(f"  Undo:        sudo {PROG} off")

    if result.probe is None:
        return

    console.print()
    console.print("[bold]Verifying...[/bold]")
    if result.probe == ProbeOutcome.BLOCKED:
        info("Verified: container cannot reach the internet.")
    elif result.probe == ProbeOutcome.REACHABLE:
        warn(f"Container could still reach {config.probe_url}. Check the {config.chain} chain by hand.")
    else:
        warn("Could not verify (container may still be starting). Test manually:")
        console.print(
            f"  docker exec {escape(config.container_name)} python3 -c "
            f"\"import urllib.request; urllib.request.urlopen('{config.probe_url}')\"",
            markup=False,
            soft_wrap=True,
        )


@app.command()
def disable(ctx: typer.Context) -> None:
    """Remove the block (restore internet)."""
    config: FirewallConfig = ctx.obj
    toggle = build_toggle(config)

    try:
        result = toggle.disable()
    except InsufficientPrivilege as e:
        raise fail(e, f"Run with elevated privileges:  sudo {PROG} {ctx.info_name}") from None
    except FirewallCommandError as e:
        raise fail(e) from None

    if result.nothing_to_remove:
        info("No firewall rules found, nothing to remove.")
        return

    for address in sorted({str(rule.source_address) for rule in result.removed}):
        info(f"Removed rules for {address}")
    for address in result.partial_addresses:
        warn(f"Only part of the rule pair was present for {address}.")
    for rule in result.failed:
        warn(f"Could not remove: {escape(rule.text)}")

    console.print()
    if result.failed:
        warn(f"Firewall partially removed for {escape(config.container_name)}. Run 'status' to inspect.")
        raise typer.Exit(1)
    info(f"Firewall OFF: internet restored for {escape(config.container_name)}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show current state."""
    config: FirewallConfig = ctx.obj
    report = build_toggle(config).status()

    console.print("[bold]ComfyUI Firewall Status[/bold]")
    console.print()

    name = escape(report.container_name)
    if report.running and report.address:
        info(f"Container '{name}' is running (IP: {report.address})")
    elif report.running:
        warn(f"Container '{name}' is running but has no network address.")
    else:
        warn(f"Container '{name}' is not running.")
        if report.container_error:
            console.print(f"  {escape(report.container_error)}")

    if report.state == IsolationState.UNKNOWN:
        warn(f"Cannot read iptables (try: sudo {PROG} status)")
        return

    if report.state == IsolationState.ACTIVE:
        console.print("  Firewall: [green]ON[/green], internet blocked")
        console.print()
        console.print(f"  Active rules in {escape(config.chain)} chain:")
        for rule in report.rules:
            console.print(f"    {rule.text}", markup=False, soft_wrap=True)
    else:
        console.print("  Firewall: [yellow]OFF[/yellow], internet accessible")
    console.print()


app.command("on", help="Alias for 'enable'.")(enable)
app.command("off", help="Alias for 'disable'.")(disable)

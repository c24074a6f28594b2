"""
cli.py - Rich Command Line Interface for Stoch Lab

Inspect override files, sampler engines and saved run settings, and run a
small demonstration experiment.

Usage:
    stoch-lab --help
    stoch-lab resolve stoch_control.properties Clinic.arrivals Ward.stay
    stoch-lab check stoch_control.properties
    stoch-lab engines
    stoch-lab show run_settings.json
    stoch-lab demo --runs 8 --workers 4 --seed 42
    stoch-lab -v demo --collapse
"""

from __future__ import annotations

import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional

import numpy as np
import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .access import Accessor
from .categorical import Bernoulli, CustomCategorical
from .config import OverrideConfig
from .distributions import Exponential, Poisson, Triangular
from .io import SettingsFormat, load_run_settings, save_run_settings
from .lookup import LookupByEnums
from .registry import RunRegistry
from .samplers import default_registry
from .simulation import Experiment, ExperimentConfig
from .types import Binary, DistributionFamily, SampleMode, StochLabError

# Initialize Typer app and Rich console
app = typer.Typer(
    name="stoch-lab",
    help="🎲 Stoch Lab: Per-Run Stochastic Items, Sample-Mode Overrides & Experiments",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def configure_logging(verbose: bool) -> None:
    """Route loguru output to stderr: DEBUG when verbose, WARNING otherwise."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def load_overrides(path: Path) -> OverrideConfig:
    """Load an override file, exiting with a message on failure."""
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)
    try:
        return OverrideConfig.from_file(path)
    except StochLabError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def mode_style(mode: SampleMode) -> str:
    return "yellow" if mode is SampleMode.COLLAPSE_MID else "green"


# =============================================================================
# DEMO MODEL
# =============================================================================

class Triage(Enum):
    MINOR = 1
    URGENT = 2
    CRITICAL = 3


class Clinic:
    """
    Toy walk-in clinic: Poisson arrivals per hour, triangular service
    times, a triage mix and a per-triage admission probability.
    """

    arrivals = Accessor()
    service = Accessor()
    triage = Accessor()
    admission = Accessor()

    def __init__(self, run: RunRegistry):
        self.run = run
        Clinic.arrivals.add_for_run(run, Poisson(6.0))
        Clinic.service.add_for_run(run, Triangular(5.0, 10.0, 30.0))
        Clinic.triage.add_for_run(run, CustomCategorical([0.6, 0.3, 0.1], category=Triage))
        admission = LookupByEnums(Triage)
        admission.put_dist(Bernoulli(0.05), Triage.MINOR)
        admission.put_dist(Bernoulli(0.3), Triage.URGENT)
        admission.put_dist(Bernoulli(0.8), Triage.CRITICAL)
        Clinic.admission.add_for_run(run, admission)
        # Singleton owner: no shared accessor needed
        self.delay = run.register_item("Reception", "delay", Exponential(2.0))

    def simulate(self, hours: int) -> dict:
        patients = admitted = 0
        minutes = 0.0
        for _ in range(hours):
            for _ in range(Clinic.arrivals.get_for_run(self.run).sample()):
                patients += 1
                category = Clinic.triage.get_for_run(self.run).sample()
                minutes += self.delay.sample() + Clinic.service.get_for_run(self.run).sample()
                if Clinic.admission.get_for_run(self.run).sample(category) == Binary.SUCCESS:
                    admitted += 1
        return {
            "patients": patients,
            "admitted": admitted,
            "mean_minutes": minutes / patients if patients else 0.0,
        }


# =============================================================================
# COMMANDS
# =============================================================================

@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Stoch Lab command line."""
    configure_logging(verbose)


@app.command()
def resolve(
    overrides_file: Path = typer.Argument(..., help="Override properties file"),
    qualified_ids: List[str] = typer.Argument(..., help="Items as Owner.id"),
):
    """
    Show the sample mode each item resolves to and the deciding key.

    Example:
        stoch-lab resolve stoch_control.properties Clinic.arrivals Ward.ALL
    """
    config = load_overrides(overrides_file)

    table = Table(title="Resolved Sample Modes", box=box.ROUNDED)
    table.add_column("Item", style="cyan")
    table.add_column("Mode")
    table.add_column("Decided by", style="dim")

    for qualified_id in qualified_ids:
        owner, _, item_id = qualified_id.partition(".")
        if not owner or not item_id:
            console.print(f"[red]Error:[/red] '{qualified_id}' is not of the form Owner.id")
            raise typer.Exit(1)
        mode = config.resolve(owner, item_id)
        key = config.explain(owner, item_id)
        table.add_row(
            qualified_id,
            f"[{mode_style(mode)}]{mode.name}[/{mode_style(mode)}]",
            key or "(default)",
        )

    console.print(table)


@app.command()
def check(
    overrides_file: Path = typer.Argument(..., help="Override properties file"),
):
    """Validate an override file and list its entries."""
    config = load_overrides(overrides_file)

    if not config.has_overrides:
        console.print(f"  [green]✓[/green] {overrides_file}: valid, no overrides (normal stochasticity)")
        return

    table = Table(title=f"Overrides in {overrides_file}", box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Mode")
    for key, mode in config.overrides.items():
        table.add_row(key, f"[{mode_style(mode)}]{mode.name}[/{mode_style(mode)}]")
    console.print(table)
    console.print(f"  [green]✓[/green] {len(config)} valid overrides")


@app.command()
def engines():
    """List sampler engines and the distribution families each serves."""
    table = Table(title="Sampler Engines", box=box.ROUNDED)
    table.add_column("Family", style="cyan")
    names = default_registry.list_engines()
    samplers = [default_registry.create(name, seed=0) for name in names]
    for name in names:
        table.add_column(name, justify="center")
    for family in DistributionFamily:
        marks = ["[green]✓[/green]" if s.supports(family) else "[red]✗[/red]" for s in samplers]
        table.add_row(family.name, *marks)
    console.print(table)

    for name in names:
        console.print(f"  [bold]{name}[/bold]: {default_registry.get(name).description}")


@app.command()
def show(
    settings_file: Path = typer.Argument(..., help="Run settings JSON file"),
):
    """Print a saved run-settings snapshot."""
    try:
        settings = load_run_settings(settings_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Run {settings.run_id or '(unknown)'}", box=box.ROUNDED)
    table.add_column("Item", style="cyan")
    table.add_column("Mode")
    table.add_column("Family", style="dim")
    table.add_column("Distribution")
    for item in settings.items:
        style = mode_style(item.sample_mode)
        table.add_row(
            item.qualified_id,
            f"[{style}]{item.sample_mode.name}[/{style}]",
            item.family.name,
            item.description,
        )
    console.print(table)


@app.command()
def demo(
    runs: int = typer.Option(4, "--runs", "-n", help="Number of runs"),
    workers: int = typer.Option(1, "--workers", "-w", help="Worker threads"),
    seed: Optional[int] = typer.Option(None, "--seed", "-s", help="Base seed"),
    hours: int = typer.Option(8, "--hours", help="Simulated opening hours per run"),
    collapse: bool = typer.Option(False, "--collapse", help="Collapse all items to their midpoints"),
    save: Optional[Path] = typer.Option(None, "--save", help="Directory for per-run settings files"),
):
    """
    Run a small clinic model as a multi-run experiment.

    Example:
        stoch-lab demo --runs 8 --workers 4 --seed 42
        stoch-lab demo --collapse
    """
    overrides = OverrideConfig.from_mapping(
        {"ALL": SampleMode.COLLAPSE_MID} if collapse else {}, source="--collapse"
    )
    try:
        config = ExperimentConfig(
            name="clinic", n_runs=runs, max_workers=workers, base_seed=seed, overrides=overrides
        )
    except StochLabError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    console.print(Panel.fit("🏥 [bold]Clinic Demo Experiment[/bold]", border_style="blue"))
    console.print(f"  Runs: [cyan]{runs}[/cyan], workers: [cyan]{workers}[/cyan], "
                  f"mode: [cyan]{'COLLAPSE_MID' if collapse else 'NORMAL'}[/cyan]\n")

    def model(run: RunRegistry) -> dict:
        return Clinic(run).simulate(hours)

    with console.status("[bold blue]Running experiment..."):
        results = Experiment(config).run(model)

    table = Table(title="Run Results", box=box.ROUNDED)
    table.add_column("Run", style="cyan")
    table.add_column("Patients", justify="right")
    table.add_column("Admitted", justify="right")
    table.add_column("Mean minutes", justify="right")
    for result in results:
        out = result.output
        table.add_row(result.run_id, str(out["patients"]), str(out["admitted"]),
                      f"{out['mean_minutes']:.1f}")
    console.print(table)

    patients = np.array([r.output["patients"] for r in results], dtype=float)
    console.print(f"\n  Mean patients per run: [bold]{patients.mean():.1f}[/bold] "
                  f"(sd {patients.std():.1f})")

    if save is not None:
        for result in results:
            save_run_settings(result.snapshots, save / f"{result.run_id}.json",
                              SettingsFormat.JSON, run_id=result.run_id)
        console.print(f"\n  💾 Settings saved to: [bold]{save}[/bold]")


@app.command()
def version():
    """Show version information."""
    from stoch_lab import __version__

    console.print(Panel(
        f"[bold cyan]Stoch Lab[/bold cyan] v{__version__}\n\n"
        "Per-run stochastic item registration, sample-mode\n"
        "overrides and multi-run experiments.",
        border_style="cyan"
    ))


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

"""
CLI entry point for the decoding-accuracy model ladder.

Commands:
  - 'munge'   → load participant .mat files, write the long-format table
  - 'fit'     → fit each configured model, check convergence, summarise
                posterior draws into per-region intervals, save artifacts
  - 'compare' → LOO comparison of previously fitted models
Assumptions:
  - Config-driven: paths, models, priors and sampler settings come from YAML
  - 'fit' reuses tables/observations.csv when it was built from the same
    files and variable, otherwise munges
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

app = typer.Typer(
    name="decoding-bayes",
    help="Bayesian hierarchical models of ROI decoding accuracy.",
    add_completion=False,
)
console = Console()


def _sources(cfg, files) -> dict:
    """What an observation table was built from."""
    return {"files": [str(Path(p).resolve()) for p in files], "variable": cfg.paths.variable}


def _observations(cfg):
    """Load the cached observation table, or build it from the raw files.

    The cache is reused only when it was built from the same participant
    files and variable as the current config would read.
    """
    from decoding_bayes.data.loader import discover_files, munge
    from decoding_bayes.io.artifacts import (
        get_tables_dir,
        load_observation_sources,
        load_observations,
        save_observations,
    )
    from decoding_bayes.utils.logging import get_logger

    logger = get_logger(__name__)
    cached = get_tables_dir(cfg.paths.output_dir) / "observations.csv"
    files = discover_files(cfg.paths.data_dir, cfg.paths.pattern)
    sources = _sources(cfg, files)
    if cached.exists():
        if load_observation_sources(cached) == sources:
            logger.info("Reusing cached observations: %s", cached)
            return load_observations(cached)
        logger.warning("Cached observations at %s are stale; re-munging", cached)
    df = munge(files, cfg.paths.variable)
    save_observations(df, cached, sources=sources)
    return df


def _selected_models(cfg, names: Optional[list[str]]):
    if not names:
        return list(cfg.models)
    return [cfg.get_model(n) for n in names]


@app.command()
def munge(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    plot: bool = typer.Option(True, "--plot/--no-plot", help="Also plot observed accuracy"),
) -> None:
    """Reshape per-participant .mat files into one long-format table."""
    from decoding_bayes.config import load_config
    from decoding_bayes.data.loader import discover_files, munge as munge_files
    from decoding_bayes.diagnostics.plots import plot_observed_accuracy
    from decoding_bayes.io.artifacts import get_tables_dir, save_observations

    cfg = load_config(config)
    files = discover_files(cfg.paths.data_dir, cfg.paths.pattern)
    df = munge_files(files, cfg.paths.variable)
    path = save_observations(
        df, get_tables_dir(cfg.paths.output_dir) / "observations.csv", sources=_sources(cfg, files)
    )

    console.print(
        f"[bold green]Munged[/bold green] {len(files)} participants → "
        f"{len(df)} rows: {path}"
    )
    if plot:
        plot_observed_accuracy(df, cfg.paths.output_dir / "figures")


@app.command()
def fit(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    model: Optional[list[str]] = typer.Option(None, "--model", "-m", help="Model name(s) to fit (default: all)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate config and print plan without sampling"),
) -> None:
    """Fit models, check convergence and summarise posterior predictions.

    For each selected model: build → sample → diagnostics → posterior draws
    (expectation or predictive) → per-group intervals → artifacts + figures.
    """
    from decoding_bayes.config import build_provenance, load_config
    from decoding_bayes.diagnostics.plots import plot_region_intervals, plot_trace
    from decoding_bayes.eval.predictions import get_predictions, observed_accuracy
    from decoding_bayes.io.artifacts import save_fit_artifacts
    from decoding_bayes.models.fit import (
        check_convergence,
        fit_model,
        posterior_epred,
        posterior_predict,
    )

    cfg = load_config(config)
    specs = _selected_models(cfg, model)

    if dry_run:
        console.print("[bold green]Config validated successfully.[/bold green]")
        console.print(f"  Data: {cfg.paths.data_dir / cfg.paths.pattern}")
        for spec in specs:
            console.print(f"  [cyan]{spec.name}[/cyan]: {spec.formula}")
            for group, prior in spec.priors.items():
                console.print(f"      {group:<9} ~ {prior.describe()}")
        s = cfg.sampler
        console.print(f"  Sampler: draws={s.draws}, tune={s.tune}, chains={s.chains}, seed={s.seed}")
        console.print(f"  Summary: {cfg.summary.kind} grouped by {cfg.summary.group_by}")
        return

    observations = _observations(cfg)
    provenance = build_provenance(cfg)
    observed = observed_accuracy(observations, cfg.summary.group_by)
    figures = cfg.paths.output_dir / "figures"

    for spec in specs:
        console.print(f"\n[bold]Fitting {spec.name}[/bold]: {spec.formula}")
        fitted = fit_model(spec, observations, cfg.sampler)
        report = check_convergence(fitted.idata, cfg.diagnostics)

        query = posterior_epred if cfg.summary.kind == "epred" else posterior_predict
        draws = query(fitted, max_draws=cfg.summary.max_draws, seed=cfg.sampler.seed)
        summary = get_predictions(draws, observations, cfg.summary.group_by)

        save_fit_artifacts(
            output_dir=cfg.paths.output_dir,
            model_name=spec.name,
            idata=fitted.idata,
            diagnostics=report.to_dict(),
            provenance=provenance,
            predictions=summary,
            config_snapshot=json.loads(spec.model_dump_json()),
        )
        if "region" in cfg.summary.group_by:
            plot_region_intervals(
                summary, figures, observed=observed,
                title=f"{spec.name}: {spec.formula}",
                filename=f"intervals_{spec.name}.png",
            )
        plot_trace(fitted.idata, figures, filename=f"trace_{spec.name}.png")

        status = "[green]✓[/green]" if report.ok else "[yellow]![/yellow]"
        console.print(
            f"    {status} max R-hat = {report.max_rhat:.3f}, "
            f"min ESS = {report.min_ess_bulk:.0f}, divergent = {report.n_divergent}"
        )

    console.print("\n[bold green]Fit complete.[/bold green]")


@app.command()
def compare(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    model: Optional[list[str]] = typer.Option(None, "--model", "-m", help="Model name(s) to compare (default: all fitted)"),
    ic: str = typer.Option("loo", "--ic", help="Information criterion: loo or waic"),
) -> None:
    """Compare fitted models by approximate leave-one-out cross-validation."""
    from decoding_bayes.config import load_config
    from decoding_bayes.diagnostics.plots import plot_comparison
    from decoding_bayes.eval.compare import compare_models
    from decoding_bayes.io.artifacts import load_fit_artifacts, save_table
    from decoding_bayes.utils.logging import get_logger

    logger = get_logger(__name__)
    cfg = load_config(config)

    traces = {}
    for spec in _selected_models(cfg, model):
        art_dir = cfg.paths.output_dir / "artifacts" / f"model-{spec.name}"
        if not (art_dir / "idata.nc").exists():
            logger.warning("No trace for model-%s; skipping", spec.name)
            continue
        traces[spec.name] = load_fit_artifacts(art_dir)["idata"]

    if len(traces) < 2:
        console.print(f"[red]Need at least two fitted models, found {len(traces)}[/red]")
        raise typer.Exit(code=1)

    table = compare_models(traces, ic=ic)
    save_table(table, cfg.paths.output_dir, "comparison", index=True)
    plot_comparison(table, cfg.paths.output_dir / "figures")

    console.print(table[["rank", f"elpd_{ic}", "elpd_diff", "dse", "weight"]].to_string())
    console.print("\n[bold green]Comparison complete.[/bold green]")


if __name__ == "__main__":
    app()

"""
Model fitting, convergence diagnostics and posterior queries.

Sampling is a single blocking call into ``pm.sample``; chain parallelism is
PyMC's business. Diagnostics come from ArviZ. Convergence problems are
surfaced as ``ConvergenceWarning`` because an imperfect fit is still useful
for exploration; with ``strict`` diagnostics any divergent transition is a
``ConvergenceError``.

Posterior queries return a plain ``(n_draws, n_obs)`` matrix whose columns
follow the row order of the observation table the model was built on:
    - ``posterior_epred``   posterior expectation of P(correct)
    - ``posterior_predict`` simulated 0/1 outcomes (posterior predictive)
"""

from __future__ import annotations

import math
import warnings
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import xarray as xr

from decoding_bayes.config import DiagnosticsConfig, ModelSpec, SamplerConfig
from decoding_bayes.errors import ConvergenceError, ConvergenceWarning, ShapeError
from decoding_bayes.models.hierarchical import build_model
from decoding_bayes.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FittedModel:
    """Handle on a fitted model: its spec, data, PyMC model and trace."""

    spec: ModelSpec
    observations: pd.DataFrame
    model: pm.Model
    idata: az.InferenceData

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def n_draws(self) -> int:
        post = self.idata.posterior
        return int(post.sizes["chain"] * post.sizes["draw"])


@dataclass
class ConvergenceReport:
    """Summary of sampler health for one fit."""

    max_rhat: float
    min_ess_bulk: float
    min_ess_tail: float
    n_divergent: int
    worst_rhat_param: str = ""
    issues: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict:
        d = asdict(self)
        d["ok"] = self.ok
        return d


def fit_model(
    spec: ModelSpec,
    observations: pd.DataFrame,
    sampler: Optional[SamplerConfig] = None,
) -> FittedModel:
    """Build and sample a model.

    Parameters
    ----------
    spec : ModelSpec
        Model to fit.
    observations : pd.DataFrame
        Long-format observation table.
    sampler : SamplerConfig, optional
        NUTS settings; defaults to ``SamplerConfig()``.

    Returns
    -------
    FittedModel
    """
    sampler = sampler or SamplerConfig()
    model = build_model(spec, observations)

    logger.info(
        "fit | model=%s draws=%d tune=%d chains=%d target_accept=%.2f",
        spec.name, sampler.draws, sampler.tune, sampler.chains, sampler.target_accept,
    )
    with model:
        idata = pm.sample(
            draws=sampler.draws,
            tune=sampler.tune,
            chains=sampler.chains,
            cores=sampler.cores,
            target_accept=sampler.target_accept,
            random_seed=sampler.seed,
            progressbar=sampler.progressbar,
            idata_kwargs={"log_likelihood": sampler.log_likelihood},
        )
    return FittedModel(spec=spec, observations=observations, model=model, idata=idata)


def load_fit(
    spec: ModelSpec,
    observations: pd.DataFrame,
    idata_path: Path,
) -> FittedModel:
    """Rebuild a ``FittedModel`` from a trace saved with ``idata.to_netcdf``."""
    idata_path = Path(idata_path)
    if not idata_path.exists():
        raise FileNotFoundError(f"Trace not found: {idata_path}")
    idata = az.from_netcdf(str(idata_path))

    if "log_likelihood" in idata.groups():
        n_obs = idata.log_likelihood[spec.outcome].sizes["obs"]
        if n_obs != len(observations):
            raise ShapeError(
                f"Trace {idata_path.name} was fit on {n_obs} observations, "
                f"table has {len(observations)}"
            )
    model = build_model(spec, observations)
    logger.info("Loaded trace for model=%s from %s", spec.name, idata_path)
    return FittedModel(spec=spec, observations=observations, model=model, idata=idata)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def check_convergence(
    idata: az.InferenceData,
    thresholds: Optional[DiagnosticsConfig] = None,
) -> ConvergenceReport:
    """R-hat, effective sample size and divergence check.

    Standard-normal offsets (``z_*``) are excluded from R-hat/ESS; the group
    effects built from them (``r_*``) are checked instead.

    Raises
    ------
    ConvergenceError
        If ``thresholds.strict`` and the sampler reported divergences.

    Warns
    -----
    ConvergenceWarning
        For any threshold violation otherwise.
    """
    thresholds = thresholds or DiagnosticsConfig()

    summary = az.summary(idata, var_names=["~z_"], filter_vars="like", kind="diagnostics")
    max_rhat = float(summary["r_hat"].max())
    min_bulk = float(summary["ess_bulk"].min())
    min_tail = float(summary["ess_tail"].min())
    worst = str(summary["r_hat"].idxmax()) if summary["r_hat"].notna().any() else ""

    n_div = 0
    if "sample_stats" in idata.groups() and "diverging" in idata.sample_stats:
        n_div = int(idata.sample_stats["diverging"].sum())

    issues = []
    if max_rhat > thresholds.rhat_max:
        issues.append(f"max R-hat {max_rhat:.3f} > {thresholds.rhat_max} ({worst})")
    if min_bulk < thresholds.ess_min:
        issues.append(f"min bulk ESS {min_bulk:.0f} < {thresholds.ess_min:.0f}")
    if min_tail < thresholds.ess_min:
        issues.append(f"min tail ESS {min_tail:.0f} < {thresholds.ess_min:.0f}")
    if n_div:
        issues.append(f"{n_div} divergent transitions")

    report = ConvergenceReport(
        max_rhat=max_rhat,
        min_ess_bulk=min_bulk,
        min_ess_tail=min_tail,
        n_divergent=n_div,
        worst_rhat_param=worst,
        issues=issues,
    )

    logger.info(
        "diagnostics | max_rhat=%.3f min_ess_bulk=%.0f min_ess_tail=%.0f divergent=%d",
        max_rhat, min_bulk, min_tail, n_div,
    )
    if n_div and thresholds.strict:
        raise ConvergenceError(f"{n_div} divergent transitions; revise the model")
    if issues:
        msg = "; ".join(issues)
        logger.warning("Convergence issues: %s", msg)
        warnings.warn(msg, ConvergenceWarning, stacklevel=2)
    return report


# ---------------------------------------------------------------------------
# Posterior queries
# ---------------------------------------------------------------------------


def thin_posterior(idata: az.InferenceData, max_draws: Optional[int]) -> az.InferenceData:
    """Keep every k-th draw of each chain so that about ``max_draws`` remain."""
    post = idata.posterior
    total = int(post.sizes["chain"] * post.sizes["draw"])
    if max_draws is None or total <= max_draws:
        return idata
    step = math.ceil(total / max_draws)
    return idata.sel(draw=slice(None, None, step))


def draw_matrix(da: xr.DataArray, max_draws: Optional[int] = None) -> np.ndarray:
    """Flatten ``(chain, draw, obs)`` into ``(chain * draw, obs)``.

    With ``max_draws``, rows are picked at evenly spaced positions of the
    chain-major stack so every chain stays represented.
    """
    arr = da.stack(sample=("chain", "draw")).transpose("sample", "obs").values
    if max_draws is not None and arr.shape[0] > max_draws:
        keep = np.linspace(0, arr.shape[0] - 1, max_draws).round().astype(np.int64)
        arr = arr[keep]
    return np.asarray(arr, dtype=np.float64)


def posterior_epred(
    fit: FittedModel,
    max_draws: Optional[int] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Posterior expectation of P(correct) for every observation.

    Returns
    -------
    np.ndarray, shape (n_draws, n_obs)
    """
    idata = thin_posterior(fit.idata, max_draws)
    model = build_model(fit.spec, fit.observations, expectation=True)
    with model:
        pp = pm.sample_posterior_predictive(
            idata, var_names=["p"], random_seed=seed, progressbar=False
        )
    draws = draw_matrix(pp.posterior_predictive["p"], max_draws)
    logger.info("epred | model=%s draws=%d obs=%d", fit.name, *draws.shape)
    return draws


def posterior_predict(
    fit: FittedModel,
    max_draws: Optional[int] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """Simulated 0/1 outcomes from the posterior predictive distribution.

    Returns
    -------
    np.ndarray, shape (n_draws, n_obs)
    """
    idata = thin_posterior(fit.idata, max_draws)
    with fit.model:
        pp = pm.sample_posterior_predictive(
            idata, var_names=[fit.spec.outcome], random_seed=seed, progressbar=False
        )
    draws = draw_matrix(pp.posterior_predictive[fit.spec.outcome], max_draws)
    logger.info("predict | model=%s draws=%d obs=%d", fit.name, *draws.shape)
    return draws

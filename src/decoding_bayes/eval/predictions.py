"""
Posterior-draw summaries ("get_predictions") and observed accuracy.

Key choices:
  - Draw matrix is ``(n_draws, n_obs)``; column j belongs to row j of the
    observation table the model was fit on (callers must keep that order)
  - Omitted grouping columns are pooled: all draws of all matching rows are
    flattened, then the 2.5% / 97.5% quantiles are taken over that set.
    Per-level quantiles are never averaged
  - Quantiles use linear interpolation between order statistics
  - Fewer than 40 pooled draws in a group cannot resolve the tails; this is
    reported as a ``LowResolutionWarning``, not an error
"""

from __future__ import annotations

import warnings
from enum import Enum
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from decoding_bayes.errors import LowResolutionWarning, SchemaError, ShapeError
from decoding_bayes.utils.logging import get_logger

logger = get_logger(__name__)

MIN_DRAWS_PER_GROUP = 40
INTERVAL = (0.025, 0.975)


class GroupingColumn(str, Enum):
    """Observation fields a summary may be grouped by."""

    REGION = "region"
    CLASS = "class"
    PARTICIPANT = "participant"
    TRIAL = "trial"


def parse_grouping(group_by: str | GroupingColumn | Iterable[str | GroupingColumn]) -> list[str]:
    """Validate grouping columns and return them as plain column names.

    Raises
    ------
    ValueError
        On an unknown, repeated or empty set of grouping columns.
    """
    if isinstance(group_by, (str, GroupingColumn)):
        group_by = [group_by]
    cols: list[str] = []
    for g in group_by:
        try:
            col = GroupingColumn(g).value
        except ValueError:
            raise ValueError(
                f"Unknown grouping column {g!r}; choose from {[c.value for c in GroupingColumn]}"
            ) from None
        if col in cols:
            raise ValueError(f"Grouping column {col!r} listed twice")
        cols.append(col)
    if not cols:
        raise ValueError("At least one grouping column is required")
    return cols


def _group_positions(meta: pd.DataFrame, cols: list[str]) -> tuple[pd.DataFrame, list[np.ndarray]]:
    """Distinct keys (sorted) and the row positions belonging to each."""
    codes = meta.groupby(cols, observed=True, sort=True).ngroup().to_numpy()
    order = np.argsort(codes, kind="stable")
    counts = np.bincount(codes)
    positions = np.split(order, np.cumsum(counts)[:-1])
    keys = meta.iloc[[p[0] for p in positions]][cols].reset_index(drop=True)
    return keys, positions


def get_predictions(
    draws: np.ndarray,
    observations: pd.DataFrame,
    group_by: Sequence[str | GroupingColumn] = ("region", "class"),
    interval: tuple[float, float] = INTERVAL,
) -> pd.DataFrame:
    """Summarise per-observation posterior draws into per-group intervals.

    Equivalent to: melt the draws to (draw, observation, value), join each
    observation's metadata by position, drop the observed outcome, group by
    ``group_by`` and take quantiles of the drawn values.

    Parameters
    ----------
    draws : np.ndarray, shape (n_draws, n_obs)
        Posterior expectation or posterior predictive draws.
    observations : pd.DataFrame
        The table the model was fit on, ``n_obs`` rows in matching order.
    group_by : sequence of str or GroupingColumn
        Subset of ``region, class, participant, trial``.
    interval : (float, float)
        Lower and upper quantile.

    Returns
    -------
    pd.DataFrame
        One row per distinct combination of ``group_by``, with columns
        ``*group_by, estimate, ymin, ymax, n_draws`` (``estimate`` is the
        pooled mean, ``n_draws`` the pooled sample size).

    Raises
    ------
    ShapeError
        If ``draws`` is not 2-D or its column count differs from the number
        of observation rows.
    SchemaError
        If a grouping column is missing from ``observations``.
    """
    draws = np.asarray(draws, dtype=np.float64)
    if draws.ndim != 2:
        raise ShapeError(f"Draw matrix must be 2-D (n_draws, n_obs), got shape {draws.shape}")
    n_draws, n_obs = draws.shape
    if n_obs != len(observations):
        raise ShapeError(
            f"Draw matrix has {n_obs} columns but the observation table has "
            f"{len(observations)} rows"
        )
    if n_draws == 0:
        raise ShapeError("Draw matrix has no draws")

    cols = parse_grouping(group_by)
    missing = [c for c in cols if c not in observations.columns]
    if missing:
        raise SchemaError(f"Observation table missing grouping column(s) {missing}")

    meta = observations[cols].reset_index(drop=True)
    keys, positions = _group_positions(meta, cols)

    lo, hi = interval
    estimate = np.empty(len(positions))
    ymin = np.empty(len(positions))
    ymax = np.empty(len(positions))
    sizes = np.empty(len(positions), dtype=np.int64)
    for i, pos in enumerate(positions):
        pooled = draws[:, pos].ravel()
        estimate[i] = pooled.mean()
        ymin[i], ymax[i] = np.quantile(pooled, [lo, hi])
        sizes[i] = pooled.size

    summary = keys.assign(estimate=estimate, ymin=ymin, ymax=ymax, n_draws=sizes)

    smallest = int(sizes.min())
    if smallest < MIN_DRAWS_PER_GROUP:
        msg = (
            f"Only {smallest} pooled draws in the smallest group; "
            f"{MIN_DRAWS_PER_GROUP}+ are needed to resolve {lo:.1%}/{hi:.1%} quantiles"
        )
        logger.warning(msg)
        warnings.warn(msg, LowResolutionWarning, stacklevel=2)

    logger.info(
        "get_predictions | group_by=%s groups=%d draws=%d obs=%d",
        ",".join(cols), len(summary), n_draws, n_obs,
    )
    return summary


def observed_accuracy(
    observations: pd.DataFrame,
    group_by: Sequence[str | GroupingColumn] = ("region", "class"),
) -> pd.DataFrame:
    """Empirical proportion correct per group.

    Returns
    -------
    pd.DataFrame
        ``*group_by, accuracy, n_trials``.
    """
    cols = parse_grouping(group_by)
    grouped = observations.groupby(cols, observed=True, sort=True)["value"]
    return grouped.agg(accuracy="mean", n_trials="size").reset_index()
